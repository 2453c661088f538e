"""
StorageAdapter backed by async SQLAlchemy (aiosqlite by default).

Each public method runs in its own session and transaction, so one entity is
always written whole or not at all. Multi-entity deletes issued here
(delete_workspace, delete_database) share one transaction.
"""
import json
import logging
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from .. import models, schemas
from ..config import settings
from ..database import create_engine_for, create_session_factory, init_db
from ..exceptions import UninitializedError
from ..utils import extract_plain_text
from .base import StorageAdapter
from .migrations import MigrationRegistry, MigrationRun, default_registry, run_migrations

logger = logging.getLogger(__name__)


class SqlAlchemyStorageAdapter(StorageAdapter):
    def __init__(
        self,
        database_url: Optional[str] = None,
        echo: Optional[bool] = None,
        registry: Optional[MigrationRegistry] = None,
        backup_dir: Optional[str] = None,
        keep_backups: Optional[int] = None,
    ):
        self.database_url = database_url or settings.DATABASE_URL
        self.echo = settings.SQL_ECHO if echo is None else echo
        self.registry = registry or default_registry
        self.backup_dir = backup_dir or settings.BACKUP_DIR
        self.keep_backups = keep_backups or settings.BACKUP_KEEP
        self.engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self.last_migration_run: Optional[MigrationRun] = None

    # ============================================
    # Lifecycle
    # ============================================

    async def init(self) -> None:
        if self._session_factory is not None:
            return
        engine = create_engine_for(self.database_url, echo=self.echo)
        await init_db(engine)
        self.engine = engine
        self._session_factory = create_session_factory(engine)
        self.last_migration_run = await run_migrations(
            self, self.registry, self.backup_dir, self.keep_backups
        )
        if not self.last_migration_run.success:
            logger.error(f"Storage started with failed migrations: {self.last_migration_run.errors}")

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
        self.engine = None
        self._session_factory = None

    def _session(self):
        if self._session_factory is None:
            raise UninitializedError()
        return self._session_factory()

    # ============================================
    # Workspaces
    # ============================================

    async def get_workspace(self, workspace_id: str) -> Optional[schemas.Workspace]:
        async with self._session() as session:
            record = await session.get(models.Workspace, workspace_id)
            return _to_workspace(record) if record else None

    async def list_workspaces(self) -> List[schemas.Workspace]:
        async with self._session() as session:
            result = await session.execute(select(models.Workspace).order_by(models.Workspace.created_at))
            return [_to_workspace(record) for record in result.scalars().all()]

    async def upsert_workspace(self, workspace: schemas.Workspace) -> None:
        async with self._session() as session, session.begin():
            await session.merge(models.Workspace(
                id=workspace.id,
                name=workspace.name,
                schema_version=workspace.schema_version,
                created_at=workspace.created_at,
                updated_at=workspace.updated_at,
            ))

    async def delete_workspace(self, workspace_id: str) -> None:
        async with self._session() as session, session.begin():
            page_ids = select(models.Page.id).where(models.Page.workspace_id == workspace_id)
            await session.execute(delete(models.Row).where(models.Row.database_page_id.in_(page_ids)))
            await session.execute(delete(models.Database).where(models.Database.page_id.in_(page_ids)))
            await session.execute(delete(models.Page).where(models.Page.workspace_id == workspace_id))
            await session.execute(delete(models.Workspace).where(models.Workspace.id == workspace_id))

    # ============================================
    # Pages
    # ============================================

    async def get_page(self, page_id: str) -> Optional[schemas.Page]:
        async with self._session() as session:
            record = await session.get(models.Page, page_id)
            return _to_page(record) if record else None

    async def upsert_page(self, page: schemas.Page) -> None:
        async with self._session() as session, session.begin():
            await session.merge(models.Page(
                id=page.id,
                workspace_id=page.workspace_id,
                parent_page_id=page.parent_page_id,
                title=page.title,
                kind=page.kind,
                is_favorite=page.is_favorite,
                content=page.content.to_dict(),
                icon=page.icon,
                cover_image=page.cover_image,
                created_at=page.created_at,
                updated_at=page.updated_at,
            ))

    async def delete_page(self, page_id: str) -> None:
        async with self._session() as session, session.begin():
            await session.execute(delete(models.Page).where(models.Page.id == page_id))

    async def list_pages(self, workspace_id: str) -> List[schemas.PageSummary]:
        async with self._session() as session:
            result = await session.execute(
                select(models.Page)
                .where(models.Page.workspace_id == workspace_id)
                .order_by(models.Page.created_at, models.Page.id)
            )
            return [_to_summary(record) for record in result.scalars().all()]

    async def get_child_pages(self, parent_page_id: str) -> List[schemas.PageSummary]:
        async with self._session() as session:
            result = await session.execute(
                select(models.Page)
                .where(models.Page.parent_page_id == parent_page_id)
                .order_by(models.Page.created_at, models.Page.id)
            )
            return [_to_summary(record) for record in result.scalars().all()]

    async def search_pages(self, workspace_id: str, query: str) -> List[schemas.PageSummary]:
        if len(query) < 1:
            return []
        query_lower = query.lower()
        async with self._session() as session:
            result = await session.execute(
                select(models.Page)
                .where(models.Page.workspace_id == workspace_id)
                .order_by(models.Page.created_at, models.Page.id)
            )
            matches = []
            for record in result.scalars().all():
                title_match = query_lower in (record.title or "").lower()
                content_match = query_lower in extract_plain_text(
                    (record.content or {}).get("blocks", [])
                ).lower()
                if title_match or content_match:
                    matches.append(_to_summary(record))
            return matches

    # ============================================
    # Databases
    # ============================================

    async def get_database(self, page_id: str) -> Optional[schemas.Database]:
        async with self._session() as session:
            record = await session.get(models.Database, page_id)
            return _to_database(record) if record else None

    async def upsert_database(self, database: schemas.Database) -> None:
        data = database.to_dict()
        async with self._session() as session, session.begin():
            await session.merge(models.Database(
                page_id=database.page_id,
                properties=data["properties"],
                views=data["views"],
            ))

    async def delete_database(self, page_id: str) -> None:
        async with self._session() as session, session.begin():
            await session.execute(delete(models.Row).where(models.Row.database_page_id == page_id))
            await session.execute(delete(models.Database).where(models.Database.page_id == page_id))

    # ============================================
    # Rows
    # ============================================

    async def get_row(self, row_id: str) -> Optional[schemas.Row]:
        async with self._session() as session:
            record = await session.get(models.Row, row_id)
            return _to_row(record) if record else None

    async def get_row_by_page(self, page_id: str) -> Optional[schemas.Row]:
        async with self._session() as session:
            result = await session.execute(select(models.Row).where(models.Row.page_id == page_id))
            record = result.scalars().first()
            return _to_row(record) if record else None

    async def upsert_row(self, row: schemas.Row) -> None:
        async with self._session() as session, session.begin():
            await session.merge(models.Row(
                id=row.id,
                database_page_id=row.database_page_id,
                page_id=row.page_id,
                values=row.to_dict()["values"],
                created_at=row.created_at,
                updated_at=row.updated_at,
            ))

    async def delete_row(self, row_id: str) -> None:
        async with self._session() as session, session.begin():
            await session.execute(delete(models.Row).where(models.Row.id == row_id))

    async def list_rows(self, database_page_id: str) -> List[schemas.RowSummary]:
        async with self._session() as session:
            result = await session.execute(
                select(models.Row, models.Page.title)
                .outerjoin(models.Page, models.Page.id == models.Row.page_id)
                .where(models.Row.database_page_id == database_page_id)
                .order_by(models.Row.created_at, models.Row.id)
            )
            return [
                schemas.RowSummary(
                    id=record.id,
                    database_page_id=record.database_page_id,
                    page_id=record.page_id,
                    title=title if title is not None else "Untitled",
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                )
                for record, title in result.all()
            ]

    async def get_rows(self, database_page_id: str) -> List[schemas.Row]:
        async with self._session() as session:
            result = await session.execute(
                select(models.Row)
                .where(models.Row.database_page_id == database_page_id)
                .order_by(models.Row.created_at, models.Row.id)
            )
            return [_to_row(record) for record in result.scalars().all()]

    # ============================================
    # Settings
    # ============================================

    async def get_settings(self, settings_id: str = "default") -> Optional[schemas.Settings]:
        async with self._session() as session:
            record = await session.get(models.Settings, settings_id)
            if record is None:
                return None
            return schemas.Settings(
                id=record.id,
                theme=record.theme,
                font_size=record.font_size,
                editor_width=record.editor_width,
                sidebar_collapsed=record.sidebar_collapsed,
            )

    async def upsert_settings(self, settings: schemas.Settings) -> None:
        async with self._session() as session, session.begin():
            await session.merge(models.Settings(
                id=settings.id,
                theme=settings.theme,
                font_size=settings.font_size,
                editor_width=settings.editor_width,
                sidebar_collapsed=settings.sidebar_collapsed,
            ))

    # ============================================
    # Migrations bookkeeping
    # ============================================

    async def get_schema_version(self) -> int:
        async with self._session() as session:
            result = await session.execute(
                select(func.max(models.Migration.version)).where(models.Migration.success.is_(True))
            )
            return result.scalar() or 0

    async def record_migration(self, record: schemas.MigrationRecord) -> None:
        async with self._session() as session, session.begin():
            session.add(models.Migration(
                version=record.version,
                name=record.name,
                applied_at=record.applied_at,
                success=record.success,
                error=record.error,
                backup_path=record.backup_path,
            ))

    async def list_migrations(self) -> List[schemas.MigrationRecord]:
        async with self._session() as session:
            result = await session.execute(select(models.Migration).order_by(models.Migration.id))
            return [
                schemas.MigrationRecord(
                    version=record.version,
                    name=record.name,
                    applied_at=record.applied_at,
                    success=record.success,
                    error=record.error,
                    backup_path=record.backup_path,
                )
                for record in result.scalars().all()
            ]

    # ============================================
    # Utility
    # ============================================

    async def get_stats(self) -> schemas.StorageStats:
        async with self._session() as session:
            workspaces = (await session.execute(select(models.Workspace))).scalars().all()
            pages = (await session.execute(select(models.Page))).scalars().all()
            databases = (await session.execute(select(models.Database))).scalars().all()
            rows = (await session.execute(select(models.Row))).scalars().all()

        # Rough estimate: size of the JSON encoding of every record
        estimated_size = (
            sum(len(_to_workspace(r).model_dump_json(by_alias=True)) for r in workspaces)
            + sum(len(_to_page(r).model_dump_json(by_alias=True)) for r in pages)
            + sum(len(_to_database(r).model_dump_json(by_alias=True)) for r in databases)
            + sum(len(_to_row(r).model_dump_json(by_alias=True)) for r in rows)
        )
        return schemas.StorageStats(
            workspace_count=len(workspaces),
            page_count=len(pages),
            database_count=len(databases),
            row_count=len(rows),
            estimated_size_bytes=estimated_size,
        )

    async def clear_all(self) -> None:
        async with self._session() as session, session.begin():
            await session.execute(delete(models.Row))
            await session.execute(delete(models.Database))
            await session.execute(delete(models.Page))
            await session.execute(delete(models.Workspace))
            await session.execute(delete(models.Settings))


def _to_workspace(record: models.Workspace) -> schemas.Workspace:
    return schemas.Workspace(
        id=record.id,
        name=record.name,
        schema_version=record.schema_version,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _summary_fields(record: models.Page) -> dict:
    return dict(
        id=record.id,
        workspace_id=record.workspace_id,
        parent_page_id=record.parent_page_id,
        title=record.title,
        kind=record.kind,
        is_favorite=bool(record.is_favorite),
        icon=record.icon,
        cover_image=record.cover_image,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _to_summary(record: models.Page) -> schemas.PageSummary:
    return schemas.PageSummary(**_summary_fields(record))


def _to_page(record: models.Page) -> schemas.Page:
    content = record.content
    if isinstance(content, str):
        content = json.loads(content)
    return schemas.Page(
        **_summary_fields(record),
        content=schemas.BlockDocument.model_validate(content or {}),
    )


def _to_database(record: models.Database) -> schemas.Database:
    return schemas.Database.model_validate({
        "pageId": record.page_id,
        "properties": record.properties or [],
        "views": record.views or [],
    })


def _to_row(record: models.Row) -> schemas.Row:
    return schemas.Row(
        id=record.id,
        database_page_id=record.database_page_id,
        page_id=record.page_id,
        values=dict(record.values or {}),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )
