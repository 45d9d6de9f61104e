# services/google_books.py - fill in missing book details from Google Books
import logging
import re
from datetime import date
from typing import Dict, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from crud.book import get_book, update_book
from schemas import BookUpdate, CoverUpload
from services.cover_images import CoverImages
from services.search_index import IndexPropagator

logger = logging.getLogger(__name__)

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
DETAIL_FIELDS = ("author", "description", "published_on")


def parse_published_date(value: Optional[str]) -> Optional[date]:
    """Google Books publishedDate is YYYY, YYYY-MM or YYYY-MM-DD."""
    if not value:
        return None
    m = re.match(r"^(\d{4})(?:-(\d{2}))?(?:-(\d{2}))?", value)
    if not m:
        return None
    try:
        return date(int(m.group(1)), int(m.group(2) or 1), int(m.group(3) or 1))
    except ValueError:
        return None


async def google_lookup(title: str, client: httpx.AsyncClient,
                        url: str = GOOGLE_BOOKS_URL) -> Optional[Dict]:
    if not title:
        return None
    try:
        r = await client.get(url, params={"q": title, "orderBy": "relevance", "maxResults": 1})
        if r.status_code != 200 or not r.json().get("items"):
            return None
        i = r.json()["items"][0]["volumeInfo"]
    except (httpx.HTTPError, ValueError, KeyError, IndexError) as e:
        logger.warning("Google Books lookup for %r failed: %s", title, e)
        return None
    return {
        "title": i.get("title", ""),
        "author": ", ".join(i.get("authors", [])) or None,
        "description": i.get("description") or None,
        "published_on": parse_published_date(i.get("publishedDate")),
        "cover_url": i.get("imageLinks", {}).get("thumbnail", "").replace("http://", "https://") or None,
    }


async def _download(client: httpx.AsyncClient, url: str) -> Optional[bytes]:
    try:
        r = await client.get(url, follow_redirects=True)
    except httpx.HTTPError as e:
        logger.warning("Cover download from %s failed: %s", url, e)
        return None
    if r.status_code != 200 or not r.content:
        return None
    return r.content


async def lookup_book_details(
    db: AsyncSession,
    book_id,
    client: httpx.AsyncClient,
    covers: Optional[CoverImages] = None,
    indexer: Optional[IndexPropagator] = None,
    url: str = GOOGLE_BOOKS_URL,
):
    """Complete ``book_id`` with data from the most relevant volume.

    Only blank fields are filled; values already on the book are kept.
    """
    book = await get_book(db, book_id)
    missing = [f for f in DETAIL_FIELDS if getattr(book, f) in (None, "")]
    wants_cover = covers is not None and not book.cover_image
    if not missing and not wants_cover:
        return book

    found = await google_lookup(book.title, client, url)
    if not found:
        logger.info("No Google Books match for book %s", book_id)
        return book

    patch = BookUpdate(**{f: found[f] for f in missing if found.get(f) is not None})
    cover = None
    if wants_cover and found.get("cover_url"):
        content = await _download(client, found["cover_url"])
        if content:
            cover = CoverUpload(file_name="cover.jpg", content=content)

    if not patch.model_fields_set and cover is None:
        return book
    logger.info("Filling %s for book %s from Google Books",
                sorted(patch.model_fields_set) + (["cover_image"] if cover else []), book_id)
    return await update_book(db, book_id, patch, cover_image=cover, covers=covers, indexer=indexer)
