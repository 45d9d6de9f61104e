# crud/book.py - ABSOLUTE IMPORTS, books table plus cover image orchestration
import logging
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFoundError, ValidationError
from models import Book
from schemas import BookCreate, BookUpdate, CoverUpload, User
from services.cover_images import CoverImages
from services.search_index import IndexPropagator, record_from_book

logger = logging.getLogger(__name__)

ALL = "all"
CREATED_BY = "created_by:"


def _require_title(title: Optional[str]):
    if title is None or not title.strip():
        raise ValidationError("title", "blank")


def _propagate_put(book: Book, indexer: Optional[IndexPropagator], covers: Optional[CoverImages]):
    if indexer is not None:
        indexer.enqueue_put(record_from_book(book, covers.bucket if covers else None))


async def _load(db: AsyncSession, book_id) -> Book:
    book = await db.get(Book, book_id)
    if book is None:
        raise NotFoundError(book_id)
    return book


async def get_book(db: AsyncSession, book_id) -> Book:
    return await _load(db, book_id)


async def book_exists(db: AsyncSession, book_id) -> bool:
    result = await db.execute(select(Book.id).where(Book.id == book_id))
    return result.scalar_one_or_none() is not None


async def count_books(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(Book))
    return result.scalar_one()


def parse_filter(filter: str) -> Optional[str]:
    """Return the creator id of a ``created_by:<id>`` filter, None for ``all``."""
    if filter == ALL:
        return None
    if filter.startswith(CREATED_BY) and filter[len(CREATED_BY):]:
        return filter[len(CREATED_BY):]
    raise ValidationError("filter", "invalid")


async def list_books(db: AsyncSession, filter: str = ALL, limit: Optional[int] = None,
                     offset: int = 0) -> List[Book]:
    creator_id = parse_filter(filter)
    stmt = select(Book)
    if creator_id is not None:
        stmt = stmt.where(Book.creator_id == creator_id)
    stmt = stmt.order_by(Book.title, Book.id).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def create_book(
    db: AsyncSession,
    book_data: BookCreate,
    user: Optional[User] = None,
    cover_image: Optional[CoverUpload] = None,
    covers: Optional[CoverImages] = None,
    indexer: Optional[IndexPropagator] = None,
) -> Book:
    _require_title(book_data.title)
    if cover_image is not None and covers is None:
        raise ValueError("cover_image requires a CoverImages binder")
    values = book_data.model_dump(exclude_unset=True)
    if user is not None:
        values["creator_id"] = user.id
    new_book = Book(**values)
    db.add(new_book)

    if cover_image is not None:
        # the blob key needs the id, so flush first and write before committing
        await db.flush()
        try:
            ref = await covers.attach(new_book.id, cover_image.file_name, cover_image.content)
        except Exception:
            await db.rollback()
            raise
        new_book.cover_image = ref.key
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            logger.warning("Creating book failed after storing %s; blob is unreferenced and needs cleanup",
                           ref.key)
            raise
    else:
        await db.commit()
    await db.refresh(new_book)
    logger.info("Created book %s", new_book.id)
    _propagate_put(new_book, indexer, covers)
    return new_book


async def update_book(
    db: AsyncSession,
    book_id,
    book_data: BookUpdate,
    cover_image: Optional[CoverUpload] = None,
    remove_cover_image: bool = False,
    covers: Optional[CoverImages] = None,
    indexer: Optional[IndexPropagator] = None,
) -> Book:
    values = book_data.model_dump(exclude_unset=True)
    if "title" in values:
        _require_title(values["title"])
    if (cover_image is not None or remove_cover_image) and covers is None:
        raise ValueError("cover image changes require a CoverImages binder")

    book = await _load(db, book_id)
    old_ref = covers.ref_for(book.cover_image) if covers else None

    if cover_image is not None:
        async def commit(new_ref):
            for field, value in values.items():
                setattr(book, field, value)
            book.cover_image = new_ref.key
            try:
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        await covers.replace(book.id, old_ref, cover_image.file_name, cover_image.content, commit)
    else:
        for field, value in values.items():
            setattr(book, field, value)
        if remove_cover_image:
            book.cover_image = None
        await db.commit()
        if remove_cover_image:
            await covers.detach(book.id, old_ref)

    await db.refresh(book)
    logger.info("Updated book %s", book.id)
    _propagate_put(book, indexer, covers)
    return book


async def delete_book(
    db: AsyncSession,
    book_id,
    covers: Optional[CoverImages] = None,
    indexer: Optional[IndexPropagator] = None,
) -> None:
    book = await _load(db, book_id)
    key = book.cover_image
    await db.delete(book)
    await db.commit()
    logger.info("Deleted book %s", book_id)

    if key:
        if covers is None:
            logger.warning("Book %s deleted without a binder; cover image %s left behind", book_id, key)
        else:
            await covers.detach(book_id, covers.ref_for(key))
    if indexer is not None:
        indexer.enqueue_delete(book_id)
