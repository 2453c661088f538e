"""
Storage adapter contract.

Every read and write of workspace data goes through a StorageAdapter. Services
depend on this interface only, so the persistence engine can be swapped
without touching them. All methods are coroutines; each one reads or writes a
single entity atomically. Getters return None for a missing entity instead of
raising. Calling anything before init() completes raises UninitializedError.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

from .. import schemas
from ..services import export_service


class StorageAdapter(ABC):

    # ============================================
    # Lifecycle
    # ============================================

    @abstractmethod
    async def init(self) -> None:
        """Create the backing store if needed and run pending migrations."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections; the adapter must be init()-ed again before reuse."""

    # ============================================
    # Workspaces
    # ============================================

    @abstractmethod
    async def get_workspace(self, workspace_id: str) -> Optional[schemas.Workspace]: ...

    @abstractmethod
    async def list_workspaces(self) -> List[schemas.Workspace]: ...

    @abstractmethod
    async def upsert_workspace(self, workspace: schemas.Workspace) -> None: ...

    @abstractmethod
    async def delete_workspace(self, workspace_id: str) -> None:
        """Delete a workspace together with its pages, databases and rows."""

    # ============================================
    # Pages
    # ============================================

    @abstractmethod
    async def get_page(self, page_id: str) -> Optional[schemas.Page]: ...

    @abstractmethod
    async def upsert_page(self, page: schemas.Page) -> None: ...

    @abstractmethod
    async def delete_page(self, page_id: str) -> None:
        """Delete one page. Children, databases and rows are the caller's concern."""

    @abstractmethod
    async def list_pages(self, workspace_id: str) -> List[schemas.PageSummary]: ...

    @abstractmethod
    async def get_child_pages(self, parent_page_id: str) -> List[schemas.PageSummary]: ...

    @abstractmethod
    async def search_pages(self, workspace_id: str, query: str) -> List[schemas.PageSummary]:
        """Case-insensitive substring match on title or flattened block text."""

    # ============================================
    # Databases
    # ============================================

    @abstractmethod
    async def get_database(self, page_id: str) -> Optional[schemas.Database]: ...

    @abstractmethod
    async def upsert_database(self, database: schemas.Database) -> None: ...

    @abstractmethod
    async def delete_database(self, page_id: str) -> None:
        """Delete a database definition and its rows. The page is deleted separately."""

    # ============================================
    # Rows
    # ============================================

    @abstractmethod
    async def get_row(self, row_id: str) -> Optional[schemas.Row]: ...

    @abstractmethod
    async def get_row_by_page(self, page_id: str) -> Optional[schemas.Row]:
        """The row whose detail page is page_id, if any."""

    @abstractmethod
    async def upsert_row(self, row: schemas.Row) -> None: ...

    @abstractmethod
    async def delete_row(self, row_id: str) -> None:
        """Delete a row. Its detail page is deleted separately."""

    @abstractmethod
    async def list_rows(self, database_page_id: str) -> List[schemas.RowSummary]: ...

    @abstractmethod
    async def get_rows(self, database_page_id: str) -> List[schemas.Row]:
        """Full rows of a database, values included."""

    # ============================================
    # Settings
    # ============================================

    @abstractmethod
    async def get_settings(self, settings_id: str = "default") -> Optional[schemas.Settings]: ...

    @abstractmethod
    async def upsert_settings(self, settings: schemas.Settings) -> None: ...

    # ============================================
    # Migrations bookkeeping
    # ============================================

    @abstractmethod
    async def get_schema_version(self) -> int:
        """Highest successfully applied migration version, 0 when none."""

    @abstractmethod
    async def record_migration(self, record: schemas.MigrationRecord) -> None: ...

    @abstractmethod
    async def list_migrations(self) -> List[schemas.MigrationRecord]: ...

    # ============================================
    # Utility
    # ============================================

    @abstractmethod
    async def get_stats(self) -> schemas.StorageStats: ...

    @abstractmethod
    async def clear_all(self) -> None: ...

    # ============================================
    # Export / import, shared by every adapter
    # ============================================

    async def export_workspace(self, workspace_id: str) -> schemas.WorkspaceExport:
        return await export_service.export_workspace(self, workspace_id)

    async def export_page(self, page_id: str, include_children: bool = True) -> schemas.WorkspaceExport:
        return await export_service.export_page(self, page_id, include_children)

    async def export_database(self, database_page_id: str) -> schemas.WorkspaceExport:
        return await export_service.export_database(self, database_page_id)

    async def import_workspace(
        self,
        workspace_id: Optional[str],
        data: Union[schemas.WorkspaceExport, Dict[str, Any], str, bytes],
        mode: schemas.ImportMode = "replace",
    ) -> schemas.ImportResult:
        return await export_service.import_workspace(self, workspace_id, data, mode)
