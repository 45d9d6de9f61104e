"""
Pytest configuration and fixtures for the book catalog tests.
"""
import os
import sys

import pytest
import pytest_asyncio

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings  # noqa: E402
from database import init_db, make_engine, make_sessionmaker  # noqa: E402
from main import Bookshelf  # noqa: E402
from services.cover_images import CoverImages  # noqa: E402
from services.search_index import IndexPropagator, SearchIndex  # noqa: E402
from services.storage import InMemoryBucket, LocalBucket  # noqa: E402

PUBLIC_URL = "https://storage.example.com/test-bucket"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'books.db'}",
        storage_backend="memory",
        bucket_dir=str(tmp_path / "bucket"),
        bucket_public_url=PUBLIC_URL,
        index_propagation_delay=0.05,
        wait_max_attempts=10,
        wait_interval=0.05,
        lookup_book_details=False,
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = make_engine(settings.database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    sessions = make_sessionmaker(engine)
    async with sessions() as session:
        yield session


@pytest.fixture
def bucket():
    return InMemoryBucket(PUBLIC_URL)


@pytest.fixture
def local_bucket(tmp_path):
    return LocalBucket(tmp_path / "bucket", PUBLIC_URL)


@pytest.fixture
def covers(bucket):
    return CoverImages(bucket)


@pytest.fixture
def index():
    return SearchIndex()


@pytest_asyncio.fixture
async def indexer(index):
    propagator = IndexPropagator(index)
    propagator.start()
    yield propagator
    await propagator.stop()


@pytest_asyncio.fixture
async def shelf(settings, bucket):
    async with Bookshelf(settings, bucket=bucket) as shelf:
        yield shelf


@pytest.fixture
def test_txt():
    return b"Test file.\n"


@pytest.fixture
def test_2_txt():
    return b"Test file 2.\n"
