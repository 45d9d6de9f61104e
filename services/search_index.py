"""
Eventually consistent book index used for listings.

Writes to the ``books`` table are mirrored here by ``IndexPropagator``, which
applies each change on its own worker task after ``delay`` seconds. Nothing
in the catalog waits for it; readers that need a write to be visible poll
``find`` with ``services.waiter.wait_until``. Records live in memory or, with
``INDEX_BACKEND=firestore``, in a Firestore collection.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from google.cloud import firestore

from schemas import IndexRecord

logger = logging.getLogger(__name__)


class SearchIndex:
    def __init__(self) -> None:
        self._records: Dict[int, IndexRecord] = {}

    def find(self, book_id: int) -> Optional[IndexRecord]:
        return self._records.get(book_id)

    def query(self, creator_id: Optional[str] = None) -> List[IndexRecord]:
        records = [r for r in self._records.values()
                   if creator_id is None or r.creator_id == creator_id]
        return sorted(records, key=lambda r: (r.title.lower(), r.id))

    def upsert(self, record: IndexRecord) -> None:
        self._records[record.id] = record

    def remove(self, book_id: int) -> None:
        self._records.pop(book_id, None)

    def __len__(self) -> int:
        return len(self._records)


class FirestoreSearchIndex:
    """Index records kept as documents in a Firestore collection, one per book.

    Calls block on the Firestore API; ``IndexPropagator`` runs them off the
    event loop.
    """

    def __init__(self, collection: str = "books_index", client: Any = None,
                 project: Optional[str] = None) -> None:
        self._client = client or firestore.Client(project=project)
        self._collection_name = collection

    def _collection(self):
        return self._client.collection(self._collection_name)

    def find(self, book_id: int) -> Optional[IndexRecord]:
        snap = self._collection().document(str(book_id)).get()
        if not snap or not snap.exists:
            return None
        return IndexRecord(**(snap.to_dict() or {}))

    def query(self, creator_id: Optional[str] = None) -> List[IndexRecord]:
        q = self._collection()
        if creator_id is not None:
            q = q.where("creator_id", "==", creator_id)
        records = [IndexRecord(**(snap.to_dict() or {})) for snap in q.stream()]
        return sorted(records, key=lambda r: (r.title.lower(), r.id))

    def upsert(self, record: IndexRecord) -> None:
        self._collection().document(str(record.id)).set(record.model_dump(mode="json"))

    def remove(self, book_id: int) -> None:
        self._collection().document(str(book_id)).delete()

    def __len__(self) -> int:
        return sum(1 for _ in self._collection().stream())


def index_from_settings(settings):
    if settings.index_backend == "firestore":
        return FirestoreSearchIndex(settings.index_collection, project=settings.gcp_project)
    return SearchIndex()


def record_from_book(book, bucket=None) -> IndexRecord:
    image_url = bucket.public_url(book.cover_image) if (bucket and book.cover_image) else None
    return IndexRecord(
        id=book.id,
        title=book.title,
        author=book.author,
        published_on=book.published_on,
        creator_id=book.creator_id,
        image_url=image_url,
    )


Change = Tuple[str, Union[IndexRecord, int]]


class IndexPropagator:
    """Applies queued index changes in order on a background task.

    A change that fails to apply is retried up to ``max_retries`` times and
    then dropped with an error log.
    """

    def __init__(self, index: SearchIndex, delay: float = 0.0, max_retries: int = 3) -> None:
        self.index = index
        self.delay = delay
        self.max_retries = max_retries
        self._queue: "asyncio.Queue[Change]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    def enqueue_put(self, record: IndexRecord) -> None:
        self._queue.put_nowait(("put", record))

    def enqueue_delete(self, book_id: int) -> None:
        self._queue.put_nowait(("delete", book_id))

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="index-propagator")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def join(self) -> None:
        await self._queue.join()

    def _apply(self, change: Change) -> None:
        op, payload = change
        if op == "put":
            self.index.upsert(payload)
        else:
            self.index.remove(payload)

    async def _run(self) -> None:
        while True:
            change = await self._queue.get()
            try:
                if self.delay:
                    await asyncio.sleep(self.delay)
                for attempt in range(self.max_retries + 1):
                    try:
                        await asyncio.to_thread(self._apply, change)
                        break
                    except Exception:
                        if attempt == self.max_retries:
                            logger.exception("Dropping index %s after %d attempts", change[0], attempt + 1)
                        else:
                            logger.warning("Index %s failed, retrying", change[0])
            finally:
                self._queue.task_done()
