"""
Versioned schema migrations.

Migrations are async callables over a StorageAdapter, so they work against any
backend. The adapter runs every migration above the recorded version during
init(), in version order, and stops at the first failure. Destructive
migrations write a JSON backup of every workspace first.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from .. import schemas
from ..exceptions import MigrationError
from ..utils import now_iso

if TYPE_CHECKING:
    from .base import StorageAdapter

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "potion-backup-v"


@dataclass
class Migration:
    version: int
    name: str
    description: str
    up: Callable[["StorageAdapter"], Awaitable[None]]
    destructive: bool = False


@dataclass
class MigrationRun:
    success: bool = True
    migrations_run: int = 0
    final_version: int = 0
    errors: List[str] = field(default_factory=list)


class MigrationRegistry:
    def __init__(self):
        self._migrations: List[Migration] = []

    def register(self, migration: Migration) -> Migration:
        if any(m.version == migration.version for m in self._migrations):
            raise MigrationError(f"Migration version {migration.version} already registered")
        self._migrations.append(migration)
        self._migrations.sort(key=lambda m: m.version)
        return migration

    def migration(self, version: int, name: str, description: str = "", destructive: bool = False):
        """Decorator form of register()."""
        def decorator(func):
            self.register(Migration(version, name, description, func, destructive))
            return func
        return decorator

    @property
    def migrations(self) -> List[Migration]:
        return list(self._migrations)

    def pending(self, current_version: int) -> List[Migration]:
        return [m for m in self._migrations if m.version > current_version]

    @property
    def target_version(self) -> int:
        return self._migrations[-1].version if self._migrations else 0


async def create_backup(storage: "StorageAdapter", version: int, backup_dir: str) -> str:
    """
    Writes every workspace's export document into one JSON file and returns its path.
    """
    directory = Path(backup_dir).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    path = directory / f"{BACKUP_PREFIX}{version}-{stamp}.json"

    exports = []
    for workspace in await storage.list_workspaces():
        exported = await storage.export_workspace(workspace.id)
        exports.append(exported.to_dict())

    payload = {"version": version, "createdAt": now_iso(), "workspaces": exports}
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    logger.info(f"Wrote migration backup for {len(exports)} workspace(s) to '{path}'")
    return str(path)


def list_backups(backup_dir: str) -> List[Path]:
    """Backup files, newest first."""
    directory = Path(backup_dir).expanduser()
    if not directory.is_dir():
        return []
    return sorted(directory.glob(f"{BACKUP_PREFIX}*.json"), key=lambda p: p.name.split("-")[-1], reverse=True)


def prune_backups(backup_dir: str, keep: int = 3) -> List[Path]:
    removed = []
    for path in list_backups(backup_dir)[keep:]:
        path.unlink()
        removed.append(path)
    if removed:
        logger.info(f"Pruned {len(removed)} old migration backup(s)")
    return removed


async def run_migrations(
    storage: "StorageAdapter",
    registry: "MigrationRegistry",
    backup_dir: Optional[str] = None,
    keep_backups: int = 3,
) -> MigrationRun:
    current = await storage.get_schema_version()
    pending = registry.pending(current)
    result = MigrationRun(final_version=current)
    if not pending:
        return result

    logger.info(f"Running {len(pending)} pending migration(s) from v{current}")
    for migration in pending:
        backup_path = None
        try:
            if migration.destructive:
                if backup_dir is None:
                    raise MigrationError(f"Migration v{migration.version} is destructive and no backup directory is set")
                backup_path = await create_backup(storage, result.final_version, backup_dir)
            await migration.up(storage)
        except Exception as error:
            message = f"Migration v{migration.version} failed: {error}"
            logger.error(message, exc_info=True)
            await storage.record_migration(schemas.MigrationRecord(
                version=migration.version,
                name=migration.name,
                applied_at=now_iso(),
                success=False,
                error=str(error),
                backup_path=backup_path,
            ))
            result.success = False
            result.errors.append(message)
            break

        await storage.record_migration(schemas.MigrationRecord(
            version=migration.version,
            name=migration.name,
            applied_at=now_iso(),
            success=True,
            backup_path=backup_path,
        ))
        result.migrations_run += 1
        result.final_version = migration.version
        logger.info(f"Applied migration v{migration.version}: {migration.name}")

    if result.success and backup_dir is not None:
        prune_backups(backup_dir, keep_backups)
    return result


default_registry = MigrationRegistry()


@default_registry.migration(1, "initial-schema", "Baseline: workspaces, pages, databases, rows and settings tables")
async def _initial_schema(storage: "StorageAdapter") -> None:
    # Tables are created by the adapter before migrations run
    return None


@default_registry.migration(2, "repair-parent-links", "Promote self-referencing and dangling pages to root")
async def _repair_parent_links(storage: "StorageAdapter") -> None:
    repaired = 0
    for workspace in await storage.list_workspaces():
        summaries = await storage.list_pages(workspace.id)
        known = {summary.id for summary in summaries}
        for summary in summaries:
            parent_id = summary.parent_page_id
            if parent_id is None or (parent_id != summary.id and parent_id in known):
                continue
            page = await storage.get_page(summary.id)
            if page is None:
                continue
            # updated_at is left as is
            await storage.upsert_page(page.model_copy(update={"parent_page_id": None}))
            repaired += 1
    if repaired:
        logger.info(f"Reset {repaired} broken parent link(s) to root")
