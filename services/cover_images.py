"""
Cover image blobs bound to the lifecycle of a book.

A book has at most one cover image, stored under
``cover_images/{book_id}/{file_name}``. Its public address is derived from
that key by the bucket, so nothing but the key is kept on the book row.

Ordering rules:

* new content is written before the book row that references it commits
* an old blob is only deleted after the row points at its replacement
* deleting an orphaned blob is best effort; failures are logged
"""
import logging
from pathlib import PurePosixPath, PureWindowsPath
from typing import Awaitable, Callable, Optional

from errors import StorageError, ValidationError
from schemas import BlobRef
from services.storage import Bucket

logger = logging.getLogger(__name__)

KEY_PREFIX = "cover_images"


def cover_image_key(book_id, file_name: str) -> str:
    # browsers may send a full client path as the upload name
    name = PureWindowsPath(PurePosixPath(file_name or "").name).name.strip()
    if not name or name in (".", ".."):
        raise ValidationError("cover_image", "invalid")
    return f"{KEY_PREFIX}/{book_id}/{name}"


class CoverImages:
    def __init__(self, bucket: Bucket):
        self.bucket = bucket

    def ref_for(self, key: Optional[str]) -> Optional[BlobRef]:
        if not key:
            return None
        return BlobRef(key=key, url=self.bucket.public_url(key))

    async def attach(self, book_id, file_name: str, content: bytes) -> BlobRef:
        key = cover_image_key(book_id, file_name)
        try:
            await self.bucket.put(key, content)
        except OSError as e:
            raise StorageError(key, str(e)) from e
        logger.info("Attached cover image %s", key)
        return self.ref_for(key)

    async def replace(
        self,
        book_id,
        old_ref: Optional[BlobRef],
        new_file_name: str,
        content: bytes,
        commit: Callable[[BlobRef], Awaitable[None]],
    ) -> BlobRef:
        """Store ``content`` as the cover of ``book_id`` and drop the old one.

        ``commit`` must persist the book row pointing at the new ref. It runs
        after the write succeeds; the old blob is deleted only once it returns.
        If it raises, the old blob stays where it is and the freshly written
        blob is reported as unreferenced. When the new name matches the old
        one the write overwrites the old blob, so its previous bytes are put
        back instead.
        """
        new_key = cover_image_key(book_id, new_file_name)
        overwritten = None
        if old_ref is not None and old_ref.key == new_key:
            overwritten = await self.bucket.get(old_ref.key)

        new_ref = await self.attach(book_id, new_file_name, content)
        try:
            await commit(new_ref)
        except Exception:
            if overwritten is not None:
                await self._restore(book_id, new_ref.key, overwritten)
            else:
                logger.warning(
                    "Book %s update failed after storing %s; blob is unreferenced and needs cleanup",
                    book_id, new_ref.key,
                )
            raise
        if old_ref is not None and old_ref.key != new_ref.key:
            await self.detach(book_id, old_ref)
        return new_ref

    async def _restore(self, book_id, key: str, content: bytes) -> None:
        try:
            await self.bucket.put(key, content)
        except (StorageError, OSError) as e:
            logger.error("Book %s update failed and cover image %s could not be restored: %s", book_id, key, e)
            return
        logger.warning("Book %s update failed; restored previous cover image %s", book_id, key)

    async def detach(self, book_id, ref: Optional[BlobRef]) -> None:
        if ref is None:
            return
        try:
            await self.bucket.delete(ref.key)
        except (StorageError, OSError) as e:
            logger.warning("Could not delete cover image %s of book %s: %s", ref.key, book_id, e)
            return
        logger.info("Detached cover image %s", ref.key)
