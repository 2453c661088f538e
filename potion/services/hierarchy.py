import logging
from typing import TYPE_CHECKING, AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple

from .. import schemas
from ..exceptions import (
    CrossWorkspaceMoveError,
    CycleDetectedError,
    HasChildrenError,
    HierarchyCorruptionError,
    PageNotFoundError,
    SelfParentError,
)
from ..utils import new_id, now_iso

if TYPE_CHECKING:
    from ..storage.base import StorageAdapter

logger = logging.getLogger(__name__)

COPY_SUFFIX = " (copy)"


def build_tree(pages: Iterable[schemas.PageSummary]) -> List[schemas.TreeNode]:
    """
    Builds the page tree from a flat list. Pages whose parent is not in the
    list become roots. Siblings are ordered by title (case-sensitive), then id,
    so any permutation of the same input gives the same tree.
    """
    pages = list(pages)
    node_map: Dict[str, schemas.TreeNode] = {
        page.id: schemas.TreeNode(**page.model_dump(), children=[]) for page in pages
    }

    roots: List[schemas.TreeNode] = []
    for page in pages:
        node = node_map[page.id]
        parent = node_map.get(page.parent_page_id) if page.parent_page_id else None
        if parent is not None and parent is not node:
            parent.children.append(node)
        else:
            roots.append(node)

    # Pages caught in a parent loop never reach a root; surface them as roots
    reachable: Set[str] = set()
    stack = list(roots)
    while stack:
        node = stack.pop()
        reachable.add(node.id)
        stack.extend(node.children)
    for page in sorted(pages, key=lambda p: (p.title, p.id)):
        if page.id not in reachable:
            node = node_map[page.id]
            parent = node_map[page.parent_page_id]
            parent.children = [child for child in parent.children if child.id != node.id]
            roots.append(node)
            stack = [node]
            while stack:
                current = stack.pop()
                reachable.add(current.id)
                stack.extend(current.children)

    def sort_tree(nodes: List[schemas.TreeNode]) -> None:
        nodes.sort(key=lambda n: (n.title, n.id))
        for node in nodes:
            sort_tree(node.children)

    sort_tree(roots)
    return roots


class HierarchyManager:
    """
    Keeps the page parent/child tree valid on top of a StorageAdapter.

    Structural problems (self-parent, cycles, cross-workspace parents) are
    rejected before anything is written. A missing page raises
    PageNotFoundError, which is not a StructuralViolationError.
    """

    build_tree = staticmethod(build_tree)

    def __init__(self, storage: "StorageAdapter"):
        self.storage = storage

    async def _require_page(self, page_id: str) -> schemas.Page:
        page = await self.storage.get_page(page_id)
        if page is None:
            raise PageNotFoundError(page_id)
        return page

    async def _walk_ancestors(self, page: schemas.Page) -> AsyncIterator[schemas.Page]:
        """
        Yields the ancestors of a page from its parent up to the root. The walk is
        bounded by the workspace page count; revisiting a page means the stored
        links already loop, which raises HierarchyCorruptionError.
        """
        limit = len(await self.storage.list_pages(page.workspace_id))
        visited = [page.id]
        parent_id = page.parent_page_id
        while parent_id is not None:
            if parent_id in visited or len(visited) > limit:
                raise HierarchyCorruptionError(parent_id, visited)
            parent = await self.storage.get_page(parent_id)
            if parent is None:
                return
            visited.append(parent.id)
            yield parent
            parent_id = parent.parent_page_id

    async def ancestors(self, page_id: str) -> List[schemas.PageSummary]:
        page = await self._require_page(page_id)
        return [ancestor.summary() async for ancestor in self._walk_ancestors(page)]

    async def is_descendant(self, ancestor_id: str, page: schemas.Page) -> bool:
        async for ancestor in self._walk_ancestors(page):
            if ancestor.id == ancestor_id:
                return True
        return False

    async def move(self, page_id: str, new_parent_id: Optional[str]) -> schemas.Page:
        if new_parent_id is not None and new_parent_id == page_id:
            raise SelfParentError(page_id)
        page = await self._require_page(page_id)

        if new_parent_id is not None:
            parent = await self._require_page(new_parent_id)
            if parent.workspace_id != page.workspace_id:
                raise CrossWorkspaceMoveError(page_id, new_parent_id)
            if await self.is_descendant(page_id, parent):
                raise CycleDetectedError(page_id, new_parent_id)

        updated = page.model_copy(update={"parent_page_id": new_parent_id, "updated_at": now_iso()})
        await self.storage.upsert_page(updated)
        return updated

    async def orphan(self, page_id: str) -> List[schemas.PageSummary]:
        """Moves every direct child of a page to the workspace root."""
        await self._require_page(page_id)
        children = await self.storage.get_child_pages(page_id)
        timestamp = now_iso()
        affected = []
        for child in children:
            full_child = await self.storage.get_page(child.id)
            if full_child is None:
                continue
            updated = full_child.model_copy(update={"parent_page_id": None, "updated_at": timestamp})
            await self.storage.upsert_page(updated)
            affected.append(updated.summary())
        return affected

    async def delete(self, page_id: str, cascade: bool = True) -> List[str]:
        """
        Deletes a page and returns every deleted page id. With cascade the
        whole subtree goes, children before parents. Without cascade the page
        must have no children left (see orphan()). Database pages also take
        their definition, rows and row detail pages with them, and deleting a
        row's detail page deletes the row.
        """
        page = await self._require_page(page_id)
        if not cascade:
            children = await self.storage.get_child_pages(page_id)
            if children:
                raise HasChildrenError(page_id, len(children))

        deleted: List[str] = []
        seen: Set[str] = set()
        # Post-order walk with an explicit stack so deep trees do not hit the recursion limit
        stack: List[Tuple[schemas.Page, bool]] = [(page, False)]
        while stack:
            current, expanded = stack.pop()
            if expanded:
                await self._delete_one(current)
                deleted.append(current.id)
                continue
            if current.id in seen:
                continue
            seen.add(current.id)
            stack.append((current, True))
            for dependent in await self._dependents(current):
                if dependent.id not in seen:
                    stack.append((dependent, False))

        if len(deleted) > 1:
            logger.info(f"Deleted page {page_id} and {len(deleted) - 1} dependent page(s)")
        return deleted

    async def _dependents(self, page: schemas.Page) -> List[schemas.Page]:
        """Child pages plus, for a database page, the detail pages of its rows."""
        ids = [child.id for child in await self.storage.get_child_pages(page.id)]
        if page.kind == "database":
            ids.extend(row.page_id for row in await self.storage.get_rows(page.id))

        dependents = []
        for dependent_id in dict.fromkeys(ids):
            dependent = await self.storage.get_page(dependent_id)
            if dependent is not None:
                dependents.append(dependent)
        return dependents

    async def _delete_one(self, page: schemas.Page) -> None:
        if page.kind == "database":
            await self.storage.delete_database(page.id)
        row = await self.storage.get_row_by_page(page.id)
        if row is not None:
            await self.storage.delete_row(row.id)
        await self.storage.delete_page(page.id)

    async def duplicate(self, page_id: str) -> schemas.Page:
        """Copies a single page; descendants are not duplicated."""
        original = await self._require_page(page_id)
        timestamp = now_iso()
        duplicate = original.model_copy(
            update={
                "id": new_id(),
                "title": f"{original.title}{COPY_SUFFIX}",
                "is_favorite": False,
                "content": original.content.model_copy(deep=True),
                "created_at": timestamp,
                "updated_at": timestamp,
            }
        )
        await self.storage.upsert_page(duplicate)
        return duplicate
