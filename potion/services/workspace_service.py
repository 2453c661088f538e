from typing import TYPE_CHECKING, Dict, List, Optional

from .. import schemas
from ..config import settings
from ..exceptions import WorkspaceNotFoundError
from ..utils import new_id, now_iso

if TYPE_CHECKING:
    from ..storage.base import StorageAdapter

WELCOME_TITLE = "Welcome to Potion"


def _text_block(block_type: str, text: str, **props) -> schemas.Block:
    return schemas.Block(
        id=new_id(),
        type=block_type,
        content=[schemas.InlineContent(type="text", text=text)],
        props=props,
    )


def create_welcome_content() -> schemas.BlockDocument:
    return schemas.BlockDocument(
        format_version=schemas.CURRENT_BLOCK_FORMAT_VERSION,
        blocks=[
            _text_block("heading", "Welcome to Potion! 🧪", level=1),
            _text_block(
                "paragraph",
                "Potion is your local-only workspace for notes and databases. "
                "All your data stays on your device.",
            ),
            _text_block("heading", "🔒 Privacy First", level=2),
            _text_block("bulletListItem", "Your data is stored in a local database file"),
            _text_block("bulletListItem", "No accounts, no cloud sync, no tracking"),
            _text_block("heading", "💾 Backup Your Work", level=2),
            _text_block(
                "paragraph",
                "Export your workspace regularly to keep a backup. The JSON file can be "
                "imported later or on another device, replacing or merging with what is there.",
            ),
            _text_block("heading", "✨ Getting Started", level=2),
            _text_block("numberedListItem", "Create a new page from the sidebar"),
            _text_block("numberedListItem", "Nest pages by moving them under another page"),
            _text_block("numberedListItem", "Star pages to add them to your favorites"),
            _text_block(
                "paragraph",
                "Feel free to delete this page once you're familiar with the app.",
            ),
        ],
    )


class WorkspaceService:
    def __init__(self, storage: "StorageAdapter"):
        self.storage = storage

    async def create(self, name: str, workspace_id: Optional[str] = None) -> schemas.Workspace:
        timestamp = now_iso()
        workspace = schemas.Workspace(
            id=workspace_id or new_id(),
            name=name,
            schema_version=schemas.CURRENT_SCHEMA_VERSION,
            created_at=timestamp,
            updated_at=timestamp,
        )
        await self.storage.upsert_workspace(workspace)
        return workspace

    async def get(self, workspace_id: str) -> schemas.Workspace:
        workspace = await self.storage.get_workspace(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(workspace_id)
        return workspace

    async def list(self) -> List[schemas.Workspace]:
        return await self.storage.list_workspaces()

    async def rename(self, workspace_id: str, name: str) -> schemas.Workspace:
        workspace = await self.get(workspace_id)
        updated = workspace.model_copy(update={"name": name, "updated_at": now_iso()})
        await self.storage.upsert_workspace(updated)
        return updated

    async def delete(self, workspace_id: str) -> None:
        await self.get(workspace_id)
        await self.storage.delete_workspace(workspace_id)

    async def get_or_create_default(self) -> schemas.Workspace:
        """
        Returns the default workspace, creating it on first run. A welcome page
        is added only when the workspace holds no pages yet.
        """
        workspace_id = settings.DEFAULT_WORKSPACE_ID
        workspace = await self.storage.get_workspace(workspace_id)
        if workspace is not None:
            return workspace

        workspace = await self.create(settings.DEFAULT_WORKSPACE_NAME, workspace_id=workspace_id)
        if not await self.storage.list_pages(workspace_id):
            await self.storage.upsert_page(schemas.Page(
                id=new_id(),
                workspace_id=workspace_id,
                parent_page_id=None,
                title=WELCOME_TITLE,
                kind="page",
                is_favorite=False,
                content=create_welcome_content(),
                icon="👋",
                created_at=workspace.created_at,
                updated_at=workspace.created_at,
            ))
        return workspace

    async def stats(self) -> schemas.StorageStats:
        return await self.storage.get_stats()

    async def summary(self, workspace_id: str) -> Dict[str, int]:
        """Page, database and favorite counts for one workspace."""
        await self.get(workspace_id)
        pages = await self.storage.list_pages(workspace_id)
        return {
            "pages": len(pages),
            "databases": sum(1 for page in pages if page.kind == "database"),
            "favorites": sum(1 for page in pages if page.is_favorite),
        }
