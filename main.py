# main.py - wires the book catalog together
import asyncio
import logging
from typing import List, Optional, Set

import httpx

from config import Settings, get_settings
from crud import book as crud
from database import init_db, make_engine, make_sessionmaker
from schemas import Book, BookCreate, BookUpdate, CoverUpload, User
from services.cover_images import CoverImages
from services.google_books import lookup_book_details
from services.search_index import IndexPropagator, index_from_settings
from services.storage import Bucket, bucket_from_settings
from services.waiter import wait_until

logger = logging.getLogger(__name__)


class Bookshelf:
    """Catalog facade: one database session per call, plus bucket and index.

    Writes return as soon as the ``books`` table has committed. The search
    index catches up on its own; use ``wait_for_index`` to observe it.
    """

    def __init__(self, settings: Optional[Settings] = None, bucket: Optional[Bucket] = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self.engine = make_engine(self.settings.database_url)
        self.sessions = make_sessionmaker(self.engine)
        self.bucket = bucket or bucket_from_settings(self.settings)
        self.covers = CoverImages(self.bucket)
        self.index = index_from_settings(self.settings)
        self.indexer = IndexPropagator(self.index, delay=self.settings.index_propagation_delay,
                                       max_retries=self.settings.index_max_retries)
        self._http = http_client
        self._owns_http = http_client is None
        self._lookups: Set[asyncio.Task] = set()

    async def start(self):
        await init_db(self.engine)
        self.indexer.start()
        return self

    async def close(self):
        for task in list(self._lookups):
            task.cancel()
        await asyncio.gather(*self._lookups, return_exceptions=True)
        await self.indexer.stop()
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        await self.engine.dispose()

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, *exc):
        await self.close()

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.http_timeout)
        return self._http

    # -- reads, straight from the books table

    async def get(self, book_id) -> Book:
        async with self.sessions() as db:
            return Book.model_validate(await crud.get_book(db, book_id))

    async def list(self, filter: str = crud.ALL, limit: Optional[int] = None, offset: int = 0) -> List[Book]:
        async with self.sessions() as db:
            books = await crud.list_books(db, filter, limit=limit, offset=offset)
        return [Book.model_validate(b) for b in books]

    async def list_for(self, user: Optional[User], mine: bool = False) -> List[Book]:
        if mine and user is not None:
            return await self.list(f"{crud.CREATED_BY}{user.id}")
        return await self.list()

    async def count(self) -> int:
        async with self.sessions() as db:
            return await crud.count_books(db)

    async def exists(self, book_id) -> bool:
        async with self.sessions() as db:
            return await crud.book_exists(db, book_id)

    def image_url(self, book) -> Optional[str]:
        ref = self.covers.ref_for(book.cover_image)
        return ref.url if ref else None

    # -- writes

    async def create(self, book_data: BookCreate, user: Optional[User] = None,
                     cover_image: Optional[CoverUpload] = None, lookup: bool = True) -> Book:
        async with self.sessions() as db:
            book = await crud.create_book(db, book_data, user=user, cover_image=cover_image,
                                          covers=self.covers, indexer=self.indexer)
            book = Book.model_validate(book)
        if lookup and self.settings.lookup_book_details:
            self._schedule_lookup(book.id)
        return book

    async def update(self, book_id, book_data: BookUpdate, cover_image: Optional[CoverUpload] = None,
                     remove_cover_image: bool = False) -> Book:
        async with self.sessions() as db:
            book = await crud.update_book(db, book_id, book_data, cover_image=cover_image,
                                          remove_cover_image=remove_cover_image,
                                          covers=self.covers, indexer=self.indexer)
            return Book.model_validate(book)

    async def delete(self, book_id) -> None:
        async with self.sessions() as db:
            await crud.delete_book(db, book_id, covers=self.covers, indexer=self.indexer)

    # -- background work

    async def lookup_details(self, book_id) -> Book:
        async with self.sessions() as db:
            book = await lookup_book_details(db, book_id, self.http, covers=self.covers,
                                             indexer=self.indexer, url=self.settings.google_books_url)
            return Book.model_validate(book)

    def _schedule_lookup(self, book_id):
        task = asyncio.create_task(self.lookup_details(book_id), name=f"lookup-book-{book_id}")
        self._lookups.add(task)
        task.add_done_callback(self._lookup_done)

    def _lookup_done(self, task: asyncio.Task):
        self._lookups.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Book details lookup failed: %s", task.exception())

    async def wait_for_index(self, book_id, present: bool = True, max_attempts: Optional[int] = None,
                             interval: Optional[float] = None, cancel: Optional[asyncio.Event] = None) -> int:
        async def visible():
            record = await asyncio.to_thread(self.index.find, book_id)
            return (record is not None) == present

        return await wait_until(
            visible,
            max_attempts=self.settings.wait_max_attempts if max_attempts is None else max_attempts,
            interval=self.settings.wait_interval if interval is None else interval,
            cancel=cancel,
        )
