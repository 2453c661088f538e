"""
Export, validation, import and merge of workspace documents.

Exports are pure reads. Imports validate the whole document before the first
write; once writing starts, entities are processed pages first, then
databases, then rows, one adapter call at a time. A failure part way through
leaves earlier writes in place and is reported in the result.
"""
import json
import logging
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .. import schemas
from ..exceptions import (
    AppException,
    DatabaseNotFoundError,
    PageNotFoundError,
    ValidationFailureError,
    WorkspaceNotFoundError,
)
from ..utils import now_iso, parse_timestamp, slugify, today_iso
from .markdown import page_to_markdown

if TYPE_CHECKING:
    from ..storage.base import StorageAdapter

logger = logging.getLogger(__name__)

RawExport = Union[schemas.WorkspaceExport, Dict[str, Any], str, bytes]


# ============================================
# Export
# ============================================

async def _databases_and_rows(
    storage: "StorageAdapter", pages: List[schemas.Page]
) -> Tuple[List[schemas.Database], List[schemas.Row]]:
    databases: List[schemas.Database] = []
    rows: List[schemas.Row] = []
    for page in pages:
        if page.kind != "database":
            continue
        database = await storage.get_database(page.id)
        if database is None:
            continue
        databases.append(database)
        rows.extend(await storage.get_rows(page.id))
    return databases, rows


async def _require_workspace(storage: "StorageAdapter", workspace_id: str) -> schemas.Workspace:
    workspace = await storage.get_workspace(workspace_id)
    if workspace is None:
        raise WorkspaceNotFoundError(workspace_id)
    return workspace


async def export_workspace(storage: "StorageAdapter", workspace_id: str) -> schemas.WorkspaceExport:
    workspace = await _require_workspace(storage, workspace_id)

    pages: List[schemas.Page] = []
    for summary in await storage.list_pages(workspace_id):
        page = await storage.get_page(summary.id)
        if page is not None:
            pages.append(page)
    databases, rows = await _databases_and_rows(storage, pages)

    return schemas.WorkspaceExport(
        format_version=schemas.CURRENT_FORMAT_VERSION,
        exported_at=now_iso(),
        workspace=workspace,
        pages=pages,
        databases=databases,
        rows=rows,
        settings=await storage.get_settings("default"),
    )


async def _collect_subtree(
    storage: "StorageAdapter", parent_id: str, collected: List[schemas.Page], seen: Set[str]
) -> None:
    for child in await storage.get_child_pages(parent_id):
        if child.id in seen:
            continue
        page = await storage.get_page(child.id)
        if page is None:
            continue
        seen.add(page.id)
        collected.append(page)
        await _collect_subtree(storage, page.id, collected, seen)


async def export_page(
    storage: "StorageAdapter", page_id: str, include_children: bool = True
) -> schemas.WorkspaceExport:
    page = await storage.get_page(page_id)
    if page is None:
        raise PageNotFoundError(page_id)
    workspace = await _require_workspace(storage, page.workspace_id)

    pages = [page]
    if include_children:
        await _collect_subtree(storage, page.id, pages, {page.id})
    databases, rows = await _databases_and_rows(storage, pages)

    return schemas.WorkspaceExport(
        format_version=schemas.CURRENT_FORMAT_VERSION,
        exported_at=now_iso(),
        workspace=workspace,
        pages=pages,
        databases=databases,
        rows=rows,
        settings=None,
    )


async def export_database(storage: "StorageAdapter", database_page_id: str) -> schemas.WorkspaceExport:
    page = await storage.get_page(database_page_id)
    if page is None or page.kind != "database":
        raise DatabaseNotFoundError(database_page_id)
    workspace = await _require_workspace(storage, page.workspace_id)
    database = await storage.get_database(database_page_id)
    if database is None:
        raise DatabaseNotFoundError(database_page_id)

    rows = await storage.get_rows(database_page_id)
    pages = [page]
    for row in rows:
        row_page = await storage.get_page(row.page_id)
        if row_page is not None:
            pages.append(row_page)

    return schemas.WorkspaceExport(
        format_version=schemas.CURRENT_FORMAT_VERSION,
        exported_at=now_iso(),
        workspace=workspace,
        pages=pages,
        databases=[database],
        rows=rows,
        settings=None,
    )


def serialize_export(export: schemas.WorkspaceExport) -> str:
    return json.dumps(export.to_dict(), indent=2, ensure_ascii=False)


def _day(day: Optional[date]) -> str:
    return day.isoformat() if day is not None else today_iso()


def workspace_export_filename(day: Optional[date] = None) -> str:
    return f"potion-workspace-{_day(day)}.json"


def page_export_filename(title: Optional[str], day: Optional[date] = None) -> str:
    return f"potion-{slugify(title)}-{_day(day)}.json"


def markdown_filename(title: Optional[str]) -> str:
    return f"{slugify(title)}.md"


async def export_page_markdown(storage: "StorageAdapter", page_id: str) -> Tuple[str, str]:
    """Returns (filename, markdown) for a single page."""
    page = await storage.get_page(page_id)
    if page is None:
        raise PageNotFoundError(page_id)
    return markdown_filename(page.title), page_to_markdown(page)


# ============================================
# Validation
# ============================================

def _load_document(raw: RawExport) -> Any:
    if isinstance(raw, schemas.WorkspaceExport):
        return raw.to_dict()
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


def _format_version(data: Dict[str, Any]) -> Any:
    if "formatVersion" in data:
        return data["formatVersion"]
    return data.get("version")


def _structural_errors(data: Any) -> List[str]:
    if not isinstance(data, dict):
        return ["Export file must contain a JSON object"]
    errors = []
    version = _format_version(data)
    if not isinstance(version, (int, float)) or isinstance(version, bool):
        errors.append("Missing or invalid formatVersion field")
    workspace = data.get("workspace")
    if not isinstance(workspace, dict) or not isinstance(workspace.get("name"), str):
        errors.append("Missing or invalid workspace field")
    if not isinstance(data.get("pages"), list):
        errors.append("Missing or invalid pages array")
    return errors


def _pydantic_messages(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return messages


def _check_document(data: Any) -> Tuple[Optional[schemas.WorkspaceExport], List[str]]:
    """Runs every check an import runs; returns the parsed export or the errors."""
    errors = _structural_errors(data)
    if errors:
        return None, errors

    version = _format_version(data)
    if version > schemas.CURRENT_FORMAT_VERSION:
        return None, [f"Unsupported export version: {version}. Please update the app."]

    try:
        return schemas.WorkspaceExport.model_validate(data), []
    except ValidationError as error:
        return None, _pydantic_messages(error)


def validate_export_file(raw: RawExport) -> schemas.ExportValidation:
    """
    Checks an export document without importing it. A document reported
    valid here is one parse_export() accepts.
    """
    try:
        data = _load_document(raw)
    except (ValueError, UnicodeDecodeError) as error:
        return schemas.ExportValidation(valid=False, errors=[f"Failed to parse file: {error}"])

    if not isinstance(data, dict):
        return schemas.ExportValidation(valid=False, errors=_structural_errors(data))
    _, errors = _check_document(data)

    workspace = data.get("workspace") if isinstance(data.get("workspace"), dict) else {}
    name = workspace.get("name")
    exported_at = data.get("exportedAt")
    pages = data.get("pages")
    return schemas.ExportValidation(
        valid=not errors,
        format_version=_format_version(data),
        page_count=len(pages) if isinstance(pages, list) else 0,
        workspace_name=name if isinstance(name, str) else None,
        exported_at=exported_at if isinstance(exported_at, str) else None,
        errors=errors,
    )


def parse_export(raw: RawExport) -> schemas.WorkspaceExport:
    """
    Parses and fully validates an export document.
    Raises:
        ValidationFailureError: With every problem found.
    """
    try:
        data = _load_document(raw)
    except (ValueError, UnicodeDecodeError) as error:
        raise ValidationFailureError([f"Failed to parse file: {error}"]) from error

    export, errors = _check_document(data)
    if errors:
        raise ValidationFailureError(errors)
    return export


# ============================================
# Import
# ============================================

def _is_newer(imported: str, local: Optional[str]) -> bool:
    """True only when the imported timestamp is strictly later."""
    imported_at = parse_timestamp(imported)
    local_at = parse_timestamp(local)
    if imported_at is None:
        return False
    if local_at is None:
        return True
    return imported_at > local_at


async def _replace(
    storage: "StorageAdapter", target_id: str, document: schemas.WorkspaceExport, result: schemas.ImportResult
) -> None:
    await storage.delete_workspace(target_id)
    await storage.upsert_workspace(document.workspace.model_copy(update={"id": target_id}))

    for page in document.pages:
        await storage.upsert_page(page.model_copy(update={"workspace_id": target_id}))
        result.pages_added += 1
    for database in document.databases:
        await storage.upsert_database(database)
        result.databases_added += 1
    for row in document.rows:
        await storage.upsert_row(row)
        result.rows_added += 1
    if document.settings is not None:
        await storage.upsert_settings(document.settings)


async def _merge(
    storage: "StorageAdapter", target_id: str, document: schemas.WorkspaceExport, result: schemas.ImportResult
) -> None:
    if await storage.get_workspace(target_id) is None:
        await storage.upsert_workspace(document.workspace.model_copy(update={"id": target_id}))

    imported_pages = {page.id: page for page in document.pages}
    # Local page state before this merge touched it
    local_stamps: Dict[str, str] = {}
    local_titles: Dict[str, str] = {}

    for imported in document.pages:
        local = await storage.get_page(imported.id)
        incoming = imported.model_copy(update={"workspace_id": target_id})
        if local is None:
            await storage.upsert_page(incoming)
            result.pages_added += 1
            continue

        local_stamps[local.id] = local.updated_at
        local_titles[local.id] = local.title
        result.conflicts.append(schemas.ImportConflict(
            entity_kind="page",
            id=imported.id,
            local_updated_at=local.updated_at,
            imported_updated_at=imported.updated_at,
            local_title=local.title,
            imported_title=imported.title,
        ))
        if _is_newer(imported.updated_at, local.updated_at):
            await storage.upsert_page(incoming)
            result.pages_updated += 1

    for database in document.databases:
        local_database = await storage.get_database(database.page_id)
        if local_database is None:
            await storage.upsert_database(database)
            result.databases_added += 1
            continue
        # Databases carry no timestamp of their own; their page's stands in
        imported_page = imported_pages.get(database.page_id)
        if imported_page is not None and _is_newer(
            imported_page.updated_at, local_stamps.get(database.page_id)
        ):
            await storage.upsert_database(database)
            result.databases_updated += 1

    for imported in document.rows:
        local = await storage.get_row(imported.id)
        if local is None:
            await storage.upsert_row(imported)
            result.rows_added += 1
            continue

        local_title = local_titles.get(local.page_id)
        if local_title is None:
            local_page = await storage.get_page(local.page_id)
            local_title = local_page.title if local_page is not None else "Untitled"
        imported_page = imported_pages.get(imported.page_id)
        result.conflicts.append(schemas.ImportConflict(
            entity_kind="row",
            id=imported.id,
            local_updated_at=local.updated_at,
            imported_updated_at=imported.updated_at,
            local_title=local_title,
            imported_title=imported_page.title if imported_page is not None else "Untitled",
        ))
        if _is_newer(imported.updated_at, local.updated_at):
            await storage.upsert_row(imported)
            result.rows_updated += 1


async def import_workspace(
    storage: "StorageAdapter",
    workspace_id: Optional[str],
    raw: RawExport,
    mode: schemas.ImportMode = "replace",
) -> schemas.ImportResult:
    """
    Imports an export document into a workspace (the document's own workspace
    id when workspace_id is None). Never raises for bad input: problems are
    reported in the result's errors.
    """
    if mode not in ("replace", "merge"):
        return schemas.ImportResult(success=False, errors=[f"Unknown import mode: {mode}"])
    try:
        document = parse_export(raw)
    except ValidationFailureError as error:
        return schemas.ImportResult(success=False, errors=error.errors)

    target_id = workspace_id or document.workspace.id
    result = schemas.ImportResult()
    logger.info(
        f"Importing {len(document.pages)} page(s), {len(document.databases)} database(s) and "
        f"{len(document.rows)} row(s) into workspace '{target_id}' ({mode})"
    )
    try:
        if mode == "replace":
            await _replace(storage, target_id, document, result)
        else:
            await _merge(storage, target_id, document, result)
    except (AppException, SQLAlchemyError, ValueError, OSError) as error:
        logger.error(f"Import into workspace '{target_id}' stopped: {error}", exc_info=True)
        result.success = False
        result.errors.append(str(error))
    return result
