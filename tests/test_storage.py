import pytest

from potion import schemas
from potion.exceptions import MigrationError, UninitializedError
from potion.storage.migrations import (
    Migration,
    MigrationRegistry,
    default_registry,
    list_backups,
    prune_backups,
    run_migrations,
)
from potion.storage.sqlalchemy_adapter import SqlAlchemyStorageAdapter

from conftest import TS, database_url


def paragraph(text):
    return schemas.BlockDocument.model_validate({
        "formatVersion": 1,
        "blocks": [{"id": "b", "type": "paragraph", "content": [{"type": "text", "text": text}]}],
    })


@pytest.mark.asyncio
async def test_operations_before_init_fail(tmp_path):
    adapter = SqlAlchemyStorageAdapter(database_url=database_url(tmp_path / "fresh.db"))
    with pytest.raises(UninitializedError):
        await adapter.get_page("anything")
    with pytest.raises(UninitializedError):
        await adapter.list_workspaces()


@pytest.mark.asyncio
async def test_getters_return_none_for_missing(storage):
    assert await storage.get_workspace("missing") is None
    assert await storage.get_page("missing") is None
    assert await storage.get_database("missing") is None
    assert await storage.get_row("missing") is None
    assert await storage.get_settings() is None


@pytest.mark.asyncio
async def test_upsert_is_insert_or_replace(storage, workspace, add_page):
    page = await add_page("First")
    await storage.upsert_page(page)
    await storage.upsert_page(page.model_copy(update={"title": "Renamed"}))

    pages = await storage.list_pages(workspace.id)
    assert len(pages) == 1
    assert pages[0].title == "Renamed"


@pytest.mark.asyncio
async def test_page_content_round_trips(storage, add_page):
    page = await add_page("Doc", content=paragraph("hello"), icon="📄", cover_image="cover.png")
    stored = await storage.get_page(page.id)
    assert stored == page
    assert isinstance(stored.summary(), schemas.PageSummary)


@pytest.mark.asyncio
async def test_child_pages(storage, add_page):
    parent = await add_page("Parent")
    child = await add_page("Child", parent_page_id=parent.id)
    await add_page("Other")

    children = await storage.get_child_pages(parent.id)
    assert [c.id for c in children] == [child.id]


@pytest.mark.asyncio
async def test_search_matches_title_and_content(storage, workspace, add_page):
    by_title = await add_page("Grocery List")
    by_content = await add_page("Notes", content=paragraph("buy more GROCERIES"))
    await add_page("Unrelated")
    await storage.upsert_workspace(schemas.Workspace(id="ws-2", name="Other", created_at=TS, updated_at=TS))
    await add_page("Grocery elsewhere", workspace_id="ws-2")

    found = await storage.search_pages(workspace.id, "grocer")

    assert {p.id for p in found} == {by_title.id, by_content.id}
    assert await storage.search_pages(workspace.id, "") == []


@pytest.mark.asyncio
async def test_list_rows_resolves_titles(storage, add_page):
    detail = await add_page("Row page")
    await storage.upsert_row(schemas.Row(
        id="r1", database_page_id="db", page_id=detail.id, values={}, created_at=TS, updated_at=TS
    ))
    await storage.upsert_row(schemas.Row(
        id="r2", database_page_id="db", page_id="gone", values={}, created_at=TS, updated_at=TS
    ))

    summaries = {row.id: row.title for row in await storage.list_rows("db")}
    assert summaries == {"r1": "Row page", "r2": "Untitled"}


@pytest.mark.asyncio
async def test_get_row_by_page(storage, add_page):
    detail = await add_page("Row page")
    await storage.upsert_row(schemas.Row(
        id="r1", database_page_id="db", page_id=detail.id, values={}, created_at=TS, updated_at=TS
    ))

    assert (await storage.get_row_by_page(detail.id)).id == "r1"
    assert await storage.get_row_by_page("other") is None


@pytest.mark.asyncio
async def test_delete_workspace_removes_contents(storage, workspace, add_page):
    db_page = await add_page("Tasks", kind="database")
    await storage.upsert_database(schemas.Database(page_id=db_page.id))
    await storage.upsert_row(schemas.Row(
        id="r1", database_page_id=db_page.id, page_id="p", values={}, created_at=TS, updated_at=TS
    ))

    await storage.delete_workspace(workspace.id)

    assert await storage.get_workspace(workspace.id) is None
    assert await storage.get_page(db_page.id) is None
    assert await storage.get_database(db_page.id) is None
    assert await storage.get_row("r1") is None


@pytest.mark.asyncio
async def test_stats_counts_entities(storage, workspace, add_page):
    db_page = await add_page("Tasks", kind="database")
    await add_page("Page")
    await storage.upsert_database(schemas.Database(page_id=db_page.id))
    await storage.upsert_row(schemas.Row(
        id="r1", database_page_id=db_page.id, page_id="p", values={"a": 1}, created_at=TS, updated_at=TS
    ))

    stats = await storage.get_stats()

    assert (stats.workspace_count, stats.page_count, stats.database_count, stats.row_count) == (1, 2, 1, 1)
    assert stats.estimated_size_bytes > 0


@pytest.mark.asyncio
async def test_settings_round_trip(storage):
    await storage.upsert_settings(schemas.Settings(theme="dark", editor_width="wide", sidebar_collapsed=True))
    settings = await storage.get_settings()
    assert settings.theme == "dark"
    assert settings.editor_width == "wide"
    assert settings.sidebar_collapsed is True


# ============================================
# Migrations
# ============================================

@pytest.mark.asyncio
async def test_init_applies_default_migrations_once(tmp_path, storage):
    assert await storage.get_schema_version() == default_registry.target_version
    records = await storage.list_migrations()
    assert [r.version for r in records] == [m.version for m in default_registry.migrations]
    assert all(r.success for r in records)

    second = SqlAlchemyStorageAdapter(database_url=database_url(tmp_path / "potion.db"))
    await second.init()
    assert second.last_migration_run.migrations_run == 0
    assert len(await second.list_migrations()) == len(records)
    await second.close()


@pytest.mark.asyncio
async def test_repair_migration_resets_broken_parent_links(storage, add_page):
    parent = await add_page("Parent")
    valid = await add_page("Valid", parent_page_id=parent.id)
    looped = await add_page("Self", page_id="self", parent_page_id="self")
    dangling = await add_page("Dangling", parent_page_id="missing")

    repair = next(m for m in default_registry.migrations if m.name == "repair-parent-links")
    await repair.up(storage)

    assert (await storage.get_page(valid.id)).parent_page_id == parent.id
    assert (await storage.get_page(looped.id)).parent_page_id is None
    assert (await storage.get_page(dangling.id)).parent_page_id is None


@pytest.mark.asyncio
async def test_destructive_migration_writes_backup(tmp_path, storage, workspace, add_page):
    await add_page("Keep me")
    applied = []

    async def up(adapter):
        applied.append(await adapter.get_schema_version())

    registry = MigrationRegistry()
    registry.register(Migration(100, "drop-things", "test", up, destructive=True))
    backup_dir = tmp_path / "backups"

    result = await run_migrations(storage, registry, str(backup_dir))

    assert result.success
    assert result.final_version == 100
    assert applied == [default_registry.target_version]
    backups = list_backups(str(backup_dir))
    assert len(backups) == 1
    assert "Keep me" in backups[0].read_text(encoding="utf-8")
    assert (await storage.list_migrations())[-1].backup_path == str(backups[0])


@pytest.mark.asyncio
async def test_failed_migration_is_recorded_and_stops_the_run(storage):
    ran = []

    async def broken(adapter):
        raise RuntimeError("boom")

    async def later(adapter):
        ran.append(True)

    registry = MigrationRegistry()
    registry.register(Migration(50, "broken", "", broken))
    registry.register(Migration(51, "later", "", later))

    result = await run_migrations(storage, registry)

    assert result.success is False
    assert "boom" in result.errors[0]
    assert ran == []
    assert await storage.get_schema_version() == default_registry.target_version
    last = (await storage.list_migrations())[-1]
    assert (last.version, last.success, last.error) == (50, False, "boom")


def test_registry_rejects_duplicate_versions():
    registry = MigrationRegistry()

    @registry.migration(1, "first")
    async def first(adapter):
        return None

    with pytest.raises(MigrationError):
        registry.register(Migration(1, "again", "", first))
    assert registry.pending(0)[0].name == "first"
    assert registry.pending(1) == []


def test_prune_backups_keeps_newest(tmp_path):
    for stamp in ("20250101T000000000000", "20250102T000000000000", "20250103T000000000000"):
        (tmp_path / f"potion-backup-v1-{stamp}.json").write_text("{}", encoding="utf-8")

    removed = prune_backups(str(tmp_path), keep=1)

    assert len(removed) == 2
    assert [p.name for p in list_backups(str(tmp_path))] == ["potion-backup-v1-20250103T000000000000.json"]
