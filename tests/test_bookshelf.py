"""
End-to-end catalog scenarios through Bookshelf: the books table, the bucket
and the eventually consistent index together.
"""
import asyncio
from datetime import date

import httpx
import pytest

from errors import ConvergenceTimeout, NotFoundError, ValidationError
from main import Bookshelf
from schemas import BookCreate, BookUpdate, CoverUpload, User
from services.waiter import wait_until

FAKE_USER = User(id="123456", name="Fake User", image_url="https://user-profile/image.png")


@pytest.mark.asyncio
async def test_no_books_have_been_added(shelf):
    assert await shelf.list() == []
    assert await shelf.count() == 0


@pytest.mark.asyncio
async def test_created_book_reaches_index(shelf):
    book = await shelf.create(BookCreate(title="A Tale of Two Cities", author="Charles Dickens"))

    await shelf.wait_for_index(book.id)

    record = shelf.index.find(book.id)
    assert record.title == "A Tale of Two Cities"
    assert record.author == "Charles Dickens"


@pytest.mark.asyncio
async def test_index_wait_times_out_when_propagation_is_slow(shelf):
    shelf.indexer.delay = 5
    book = await shelf.create(BookCreate(title="Slow"))

    with pytest.raises(ConvergenceTimeout) as exc_info:
        await shelf.wait_for_index(book.id, max_attempts=3, interval=0)
    assert exc_info.value.attempts == 3
    # the books table is already up to date
    assert (await shelf.get(book.id)).title == "Slow"


@pytest.mark.asyncio
async def test_displaying_a_book(shelf):
    book = await shelf.create(BookCreate(
        title="A Tale of Two Cities",
        author="Charles Dickens",
        published_on="2015-01-01",
        description="This is a book!",
    ))

    book = await shelf.get(book.id)
    assert book.published_on == date(2015, 1, 1)
    assert book.display_author == "Charles Dickens"
    assert book.description == "This is a book!"


@pytest.mark.asyncio
async def test_unknown_author(shelf):
    book = await shelf.create(BookCreate(title="A Tale of Two Cities"))

    assert (await shelf.get(book.id)).display_author == "unknown"


@pytest.mark.asyncio
async def test_editing_a_book(shelf):
    book = await shelf.create(BookCreate(title="A Tale of Two Cities", author="Charles Dickens"))
    await shelf.wait_for_index(book.id)

    await shelf.update(book.id, BookUpdate(title="CHANGED!"))

    book = await shelf.get(book.id)
    assert book.title == "CHANGED!"
    assert book.author == "Charles Dickens"
    await wait_until(lambda: shelf.index.find(book.id).title == "CHANGED!", max_attempts=20, interval=0.05)


@pytest.mark.asyncio
async def test_editing_with_missing_title(shelf):
    book = await shelf.create(BookCreate(title="A Tale of Two Cities"))

    with pytest.raises(ValidationError):
        await shelf.update(book.id, BookUpdate(title=""))

    assert (await shelf.get(book.id)).title == "A Tale of Two Cities"


@pytest.mark.asyncio
async def test_deleting_a_book(shelf):
    book = await shelf.create(BookCreate(title="A Tale of Two Cities", author="Charles Dickens"))
    await shelf.wait_for_index(book.id)
    assert await shelf.exists(book.id)

    await shelf.delete(book.id)

    assert not await shelf.exists(book.id)
    await shelf.wait_for_index(book.id, present=False)


class TestCoverImages:

    @pytest.mark.asyncio
    async def test_adding_a_book_with_an_image(self, shelf, bucket, test_txt):
        book = await shelf.create(BookCreate(title="A Tale of Two Cities"),
                                  cover_image=CoverUpload(file_name="test.txt", content=test_txt))

        book = await shelf.get(book.id)
        assert shelf.image_url(book).endswith(f"/cover_images/{book.id}/test.txt")
        assert await bucket.keys() == [f"cover_images/{book.id}/test.txt"]
        assert b"Test file." in await bucket.get(f"cover_images/{book.id}/test.txt")

    @pytest.mark.asyncio
    async def test_index_carries_image_url(self, shelf, test_txt):
        book = await shelf.create(BookCreate(title="A Tale of Two Cities"),
                                  cover_image=CoverUpload(file_name="test.txt", content=test_txt))
        await shelf.wait_for_index(book.id)

        assert shelf.index.find(book.id).image_url == shelf.image_url(book)

    @pytest.mark.asyncio
    async def test_editing_a_books_cover_image(self, shelf, bucket, test_txt, test_2_txt):
        book = await shelf.create(BookCreate(title="A Tale of Two Cities"),
                                  cover_image=CoverUpload(file_name="test.txt", content=test_txt))

        await shelf.update(book.id, BookUpdate(),
                           cover_image=CoverUpload(file_name="test-2.txt", content=test_2_txt))

        assert await bucket.exists(f"cover_images/{book.id}/test-2.txt")
        assert not await bucket.exists(f"cover_images/{book.id}/test.txt")
        book = await shelf.get(book.id)
        assert shelf.image_url(book).endswith(f"/cover_images/{book.id}/test-2.txt")

    @pytest.mark.asyncio
    async def test_deleting_a_book_with_an_image(self, shelf, bucket, test_txt):
        book = await shelf.create(BookCreate(title="A Tale of Two Cities"),
                                  cover_image=CoverUpload(file_name="test.txt", content=test_txt))
        image_key = f"cover_images/{book.id}/test.txt"
        assert await bucket.exists(image_key)

        await shelf.delete(book.id)

        assert not await shelf.exists(book.id)
        assert not await bucket.exists(image_key)
        with pytest.raises(NotFoundError):
            await shelf.get(book.id)


class TestLoggedIn:

    @pytest.mark.asyncio
    async def test_listing_users_books(self, shelf):
        book1 = await shelf.create(BookCreate(title="Book created by anonymous user"))
        book2 = await shelf.create(BookCreate(title="Book created by logged in user", creator_id="123456"))
        await shelf.wait_for_index(book1.id)
        await shelf.wait_for_index(book2.id)

        anonymous = [b.title for b in await shelf.list_for(None)]
        everything = [b.title for b in await shelf.list_for(FAKE_USER)]
        mine = [b.title for b in await shelf.list_for(FAKE_USER, mine=True)]

        assert anonymous == everything == ["Book created by anonymous user", "Book created by logged in user"]
        assert mine == ["Book created by logged in user"]
        assert [r.id for r in shelf.index.query("123456")] == [book2.id]

    @pytest.mark.asyncio
    async def test_adding_a_users_book(self, shelf):
        await shelf.create(BookCreate(title="A Tale of Two Cities", author="Charles Dickens"), user=FAKE_USER)

        assert await shelf.count() == 1
        book = (await shelf.list())[0]
        assert book.creator_id == "123456"
        assert book.title == "A Tale of Two Cities"
        assert book.author == "Charles Dickens"


@pytest.mark.asyncio
async def test_lookup_runs_in_background(settings, bucket):
    settings = settings.model_copy(update={"lookup_book_details": True})

    def handler(request):
        return httpx.Response(200, json={"items": [{"volumeInfo": {
            "title": "A Tale of Two Cities", "authors": ["Charles Dickens"],
        }}]})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    async with Bookshelf(settings, bucket=bucket, http_client=client) as shelf:
        book = await shelf.create(BookCreate(title="A Tale of Two Cities"))

        async def has_author():
            return (await shelf.get(book.id)).author == "Charles Dickens"

        await wait_until(has_author, max_attempts=20, interval=0.05)
    await client.aclose()


@pytest.mark.asyncio
async def test_concurrent_waits_are_independent(shelf):
    books = [await shelf.create(BookCreate(title=f"Book {i}")) for i in range(3)]

    attempts = await asyncio.gather(*(shelf.wait_for_index(b.id) for b in books))

    assert all(a >= 1 for a in attempts)


@pytest.mark.asyncio
async def test_zero_wait_attempts_is_rejected(shelf):
    book = await shelf.create(BookCreate(title="A Tale of Two Cities"))

    with pytest.raises(ValueError):
        await shelf.wait_for_index(book.id, max_attempts=0)
