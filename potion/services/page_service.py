from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .. import schemas
from ..exceptions import (
    CrossWorkspaceMoveError,
    PageNotFoundError,
    ValidationFailureError,
    WorkspaceNotFoundError,
)
from ..utils import new_id, now_iso
from .hierarchy import HierarchyManager, build_tree

if TYPE_CHECKING:
    from ..storage.base import StorageAdapter

UPDATABLE_FIELDS = {"title", "content", "icon", "cover_image", "is_favorite"}
REQUIRED_FIELDS = ("title", "content", "is_favorite")


def create_empty_content() -> schemas.BlockDocument:
    return schemas.BlockDocument(format_version=schemas.CURRENT_BLOCK_FORMAT_VERSION, blocks=[])


class PageService:
    def __init__(self, storage: "StorageAdapter"):
        self.storage = storage
        self.hierarchy = HierarchyManager(storage)

    async def create(
        self,
        workspace_id: str,
        title: str = "Untitled",
        parent_page_id: Optional[str] = None,
        kind: schemas.PageKind = "page",
        icon: Optional[str] = None,
        content: Optional[schemas.BlockDocument] = None,
    ) -> schemas.Page:
        if await self.storage.get_workspace(workspace_id) is None:
            raise WorkspaceNotFoundError(workspace_id)
        page_id = new_id()
        if parent_page_id is not None:
            parent = await self.get(parent_page_id)
            if parent.workspace_id != workspace_id:
                raise CrossWorkspaceMoveError(page_id, parent_page_id)

        timestamp = now_iso()
        page = schemas.Page(
            id=page_id,
            workspace_id=workspace_id,
            parent_page_id=parent_page_id,
            title=title,
            kind=kind,
            is_favorite=False,
            content=content or create_empty_content(),
            icon=icon,
            created_at=timestamp,
            updated_at=timestamp,
        )
        await self.storage.upsert_page(page)
        return page

    async def get(self, page_id: str) -> schemas.Page:
        page = await self.storage.get_page(page_id)
        if page is None:
            raise PageNotFoundError(page_id)
        return page

    async def list(self, workspace_id: str) -> List[schemas.PageSummary]:
        return await self.storage.list_pages(workspace_id)

    async def get_tree(self, workspace_id: str) -> List[schemas.TreeNode]:
        return build_tree(await self.storage.list_pages(workspace_id))

    async def get_children(self, page_id: str) -> List[schemas.PageSummary]:
        return await self.storage.get_child_pages(page_id)

    async def root_pages(self, workspace_id: str) -> List[schemas.PageSummary]:
        return [page for page in await self.list(workspace_id) if page.parent_page_id is None]

    async def favorite_pages(self, workspace_id: str) -> List[schemas.PageSummary]:
        return [page for page in await self.list(workspace_id) if page.is_favorite]

    async def update(self, page_id: str, **changes: Any) -> schemas.Page:
        """
        Updates title, content, icon, cover image or favorite flag. Parent
        changes go through move() so the tree checks run.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update page field(s): {', '.join(sorted(unknown))}")
        nulls = [field for field in REQUIRED_FIELDS if field in changes and changes[field] is None]
        if nulls:
            raise ValidationFailureError([f"{field} cannot be null" for field in nulls])
        page = await self.get(page_id)
        updated = page.model_copy(update={**changes, "updated_at": now_iso()})
        await self.storage.upsert_page(updated)
        return updated

    async def rename(self, page_id: str, title: str) -> schemas.Page:
        return await self.update(page_id, title=title)

    async def update_content(self, page_id: str, content: schemas.BlockDocument) -> schemas.Page:
        return await self.update(page_id, content=content)

    async def toggle_favorite(self, page_id: str) -> schemas.Page:
        page = await self.get(page_id)
        return await self.update(page_id, is_favorite=not page.is_favorite)

    async def move(self, page_id: str, new_parent_id: Optional[str]) -> schemas.Page:
        return await self.hierarchy.move(page_id, new_parent_id)

    async def delete(self, page_id: str, cascade: bool = True) -> List[str]:
        return await self.hierarchy.delete(page_id, cascade=cascade)

    async def duplicate(self, page_id: str) -> schemas.Page:
        return await self.hierarchy.duplicate(page_id)

    async def search(self, workspace_id: str, query: str) -> List[schemas.PageSummary]:
        return await self.storage.search_pages(workspace_id, query)

    async def search_with_ancestors(self, workspace_id: str, query: str) -> Dict[str, List[str]]:
        """
        Matching page ids plus the ids of their ancestors, so a sidebar can
        show matches inside their branch of the tree.
        """
        matches = await self.storage.search_pages(workspace_id, query)
        match_ids = [page.id for page in matches]
        parents = {page.id: page.parent_page_id for page in await self.storage.list_pages(workspace_id)}

        ancestor_ids = []
        seen = set(match_ids)
        for page in matches:
            parent_id = page.parent_page_id
            while parent_id is not None and parent_id in parents and parent_id not in seen:
                seen.add(parent_id)
                ancestor_ids.append(parent_id)
                parent_id = parents[parent_id]
        return {"matches": match_ids, "ancestors": ancestor_ids}
