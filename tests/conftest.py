import pytest
import pytest_asyncio

from potion import schemas
from potion.storage.sqlalchemy_adapter import SqlAlchemyStorageAdapter
from potion.utils import new_id

TS = "2025-01-01T00:00:00+00:00"


def database_url(path) -> str:
    return f"sqlite+aiosqlite:///{path}"


@pytest_asyncio.fixture
async def storage(tmp_path):
    adapter = SqlAlchemyStorageAdapter(
        database_url=database_url(tmp_path / "potion.db"),
        backup_dir=str(tmp_path / "backups"),
    )
    await adapter.init()
    yield adapter
    await adapter.close()


@pytest_asyncio.fixture
async def workspace(storage):
    ws = schemas.Workspace(id="ws-1", name="Test Workspace", created_at=TS, updated_at=TS)
    await storage.upsert_workspace(ws)
    return ws


@pytest.fixture
def add_page(storage, workspace):
    """Stores a page with fixed timestamps and returns it."""

    async def _add_page(title, parent_page_id=None, page_id=None, updated_at=TS, **fields):
        page = schemas.Page(
            id=page_id or new_id(),
            workspace_id=fields.pop("workspace_id", workspace.id),
            parent_page_id=parent_page_id,
            title=title,
            created_at=TS,
            updated_at=updated_at,
            **fields,
        )
        await storage.upsert_page(page)
        return page

    return _add_page
