"""Unit tests for DatabasePostStore."""

from datetime import date

import pytest

from nextgenblog.core.errors import Conflict, NotFound, ValidationError
from nextgenblog.core.models import PostFields
from nextgenblog.core.storage import DatabasePostStore


@pytest.fixture
def storage(session_factory):
    return DatabasePostStore(session_factory)


def fields(title="Hello World", day=date(2024, 1, 1), description="d", body="text"):
    return PostFields(title=title, date=day, description=description, body=body)


# ============================================================
# Create / read
# ============================================================


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_derives_identity(self, storage):
        post = await storage.create_post(fields())
        assert post.slug == "hello-world"
        assert post.filename == "2024-01-01-hello-world.md"
        assert post.body == "text"

    @pytest.mark.asyncio
    async def test_get_returns_stored_post(self, storage):
        await storage.create_post(fields(body="# Heading\n\nBody"))
        post = await storage.get_post("2024-01-01-hello-world.md")
        assert post is not None
        assert post.title == "Hello World"
        assert post.date == date(2024, 1, 1)
        assert post.description == "d"
        assert post.body == "# Heading\n\nBody"

    @pytest.mark.asyncio
    async def test_get_nonexistent(self, storage):
        assert await storage.get_post("2024-01-01-nope.md") is None

    @pytest.mark.asyncio
    async def test_duplicate_title_and_date_conflicts(self, storage):
        await storage.create_post(fields())
        with pytest.raises(Conflict):
            await storage.create_post(fields(description="other"))

    @pytest.mark.asyncio
    async def test_duplicate_slug_on_other_date_conflicts(self, storage):
        await storage.create_post(fields())
        with pytest.raises(Conflict):
            await storage.create_post(fields(day=date(2024, 6, 1)))

    @pytest.mark.asyncio
    async def test_title_without_letters_rejected(self, storage):
        with pytest.raises(ValidationError):
            await storage.create_post(fields(title="!!!"))


# ============================================================
# Listing
# ============================================================


class TestList:
    @pytest.mark.asyncio
    async def test_empty(self, storage):
        assert await storage.list_posts() == []

    @pytest.mark.asyncio
    async def test_newest_date_first(self, storage):
        await storage.create_post(fields(title="Old", day=date(2023, 1, 1)))
        await storage.create_post(fields(title="New", day=date(2024, 1, 1)))
        await storage.create_post(fields(title="Middle", day=date(2023, 6, 1)))
        titles = [p.title for p in await storage.list_posts()]
        assert titles == ["New", "Middle", "Old"]

    @pytest.mark.asyncio
    async def test_same_date_newest_created_first(self, storage):
        await storage.create_post(fields(title="First"))
        await storage.create_post(fields(title="Second"))
        titles = [p.title for p in await storage.list_posts()]
        assert titles == ["Second", "First"]

    @pytest.mark.asyncio
    async def test_summaries_have_no_body(self, storage):
        await storage.create_post(fields())
        [summary] = await storage.list_posts()
        assert summary.filename == "2024-01-01-hello-world.md"
        assert not hasattr(summary, "body")


# ============================================================
# Update
# ============================================================


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_in_place(self, storage):
        await storage.create_post(fields())
        post = await storage.update_post("2024-01-01-hello-world.md", fields(body="edited"))
        assert post.filename == "2024-01-01-hello-world.md"
        assert (await storage.get_post(post.filename)).body == "edited"

    @pytest.mark.asyncio
    async def test_title_change_renames(self, storage):
        await storage.create_post(fields())
        post = await storage.update_post("2024-01-01-hello-world.md", fields(title="Goodbye World"))
        assert post.slug == "goodbye-world"
        assert post.filename == "2024-01-01-goodbye-world.md"
        assert [p.filename for p in await storage.list_posts()] == ["2024-01-01-goodbye-world.md"]

    @pytest.mark.asyncio
    async def test_old_filename_still_resolves(self, storage):
        await storage.create_post(fields())
        await storage.update_post("2024-01-01-hello-world.md", fields(day=date(2024, 2, 2)))
        post = await storage.get_post("2024-01-01-hello-world.md")
        assert post is not None
        assert post.filename == "2024-02-02-hello-world.md"

    @pytest.mark.asyncio
    async def test_rename_back_and_forth(self, storage):
        await storage.create_post(fields())
        await storage.update_post("2024-01-01-hello-world.md", fields(title="Renamed"))
        post = await storage.update_post("2024-01-01-renamed.md", fields())
        assert post.filename == "2024-01-01-hello-world.md"
        assert (await storage.get_post("2024-01-01-renamed.md")).filename == post.filename

    @pytest.mark.asyncio
    async def test_new_post_takes_over_alias(self, storage):
        await storage.create_post(fields())
        await storage.update_post("2024-01-01-hello-world.md", fields(title="Renamed"))
        # Frees the slug, so a new post may reuse the old name
        created = await storage.create_post(fields(body="brand new"))
        fetched = await storage.get_post("2024-01-01-hello-world.md")
        assert fetched.body == "brand new"
        assert fetched.filename == created.filename

    @pytest.mark.asyncio
    async def test_update_missing(self, storage):
        with pytest.raises(NotFound):
            await storage.update_post("2024-01-01-nope.md", fields())

    @pytest.mark.asyncio
    async def test_update_onto_other_post_conflicts(self, storage):
        await storage.create_post(fields(title="One"))
        await storage.create_post(fields(title="Two"))
        with pytest.raises(Conflict):
            await storage.update_post("2024-01-01-two.md", fields(title="One"))
        assert (await storage.get_post("2024-01-01-two.md")).title == "Two"


# ============================================================
# Delete
# ============================================================


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete(self, storage):
        await storage.create_post(fields())
        assert await storage.delete_post("2024-01-01-hello-world.md") is True
        assert await storage.get_post("2024-01-01-hello-world.md") is None
        assert await storage.list_posts() == []

    @pytest.mark.asyncio
    async def test_delete_nonexistent(self, storage):
        assert await storage.delete_post("2024-01-01-nope.md") is False

    @pytest.mark.asyncio
    async def test_delete_removes_aliases(self, storage):
        await storage.create_post(fields())
        await storage.update_post("2024-01-01-hello-world.md", fields(title="Renamed"))
        await storage.delete_post("2024-01-01-renamed.md")
        assert await storage.get_post("2024-01-01-hello-world.md") is None


class TestIndex:
    @pytest.mark.asyncio
    async def test_table_is_always_consistent(self, storage):
        await storage.create_post(fields())
        report = await storage.check_index()
        assert report.consistent is True
        assert (await storage.rebuild_index()).consistent is True
