from typing import List

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse, Response

from . import schemas
from .exceptions import (
    NotFoundError,
    StructuralViolationError,
    UninitializedError,
    ValidationFailureError,
)
from .logging_config import setup_logging
from .services import export_service
from .services.database_service import DatabaseService
from .services.hierarchy import HierarchyManager
from .services.page_service import PageService
from .services.workspace_service import WorkspaceService
from .storage.base import StorageAdapter
from .storage.sqlalchemy_adapter import SqlAlchemyStorageAdapter

app = FastAPI(title="Potion")

# The one adapter of this process; services receive it explicitly
storage: StorageAdapter = SqlAlchemyStorageAdapter()


def get_storage() -> StorageAdapter:
    return storage


@app.on_event("startup")
async def startup():
    setup_logging()
    await get_storage().init()
    await WorkspaceService(get_storage()).get_or_create_default()


@app.on_event("shutdown")
async def shutdown():
    await get_storage().close()


# Error mapping
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StructuralViolationError)
async def structural_violation_handler(request: Request, exc: StructuralViolationError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ValidationFailureError)
async def validation_failure_handler(request: Request, exc: ValidationFailureError):
    return JSONResponse(status_code=422, content={"detail": exc.errors})


@app.exception_handler(UninitializedError)
async def uninitialized_handler(request: Request, exc: UninitializedError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def _download(content: str, filename: str, media_type: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


# Workspaces
@app.get("/api/workspaces", response_model=List[schemas.Workspace])
async def list_workspaces(storage: StorageAdapter = Depends(get_storage)):
    return await WorkspaceService(storage).list()


@app.get("/api/workspaces/{workspace_id}/tree", response_model=List[schemas.TreeNode])
async def get_tree(workspace_id: str, storage: StorageAdapter = Depends(get_storage)):
    await WorkspaceService(storage).get(workspace_id)
    return await PageService(storage).get_tree(workspace_id)


@app.get("/api/workspaces/{workspace_id}/search")
async def search_pages(workspace_id: str, q: str = "", storage: StorageAdapter = Depends(get_storage)):
    return await PageService(storage).search_with_ancestors(workspace_id, q)


@app.get("/api/stats", response_model=schemas.StorageStats)
async def get_stats(storage: StorageAdapter = Depends(get_storage)):
    return await WorkspaceService(storage).stats()


# Pages
@app.post("/api/pages", response_model=schemas.Page, status_code=status.HTTP_201_CREATED)
async def create_page(body: schemas.PageCreate, storage: StorageAdapter = Depends(get_storage)):
    return await PageService(storage).create(
        body.workspace_id,
        body.title,
        parent_page_id=body.parent_page_id,
        kind=body.kind,
        icon=body.icon,
    )


@app.get("/api/pages/{page_id}", response_model=schemas.Page)
async def get_page(page_id: str, storage: StorageAdapter = Depends(get_storage)):
    return await PageService(storage).get(page_id)


@app.patch("/api/pages/{page_id}", response_model=schemas.Page)
async def update_page(page_id: str, body: schemas.PageUpdate, storage: StorageAdapter = Depends(get_storage)):
    changes = {key: getattr(body, key) for key in body.model_fields_set}
    return await PageService(storage).update(page_id, **changes)


@app.delete("/api/pages/{page_id}")
async def delete_page(page_id: str, cascade: bool = True, storage: StorageAdapter = Depends(get_storage)):
    deleted = await HierarchyManager(storage).delete(page_id, cascade=cascade)
    return {"deleted": deleted}


@app.post("/api/pages/{page_id}/move", response_model=schemas.Page)
async def move_page(page_id: str, body: schemas.MoveRequest, storage: StorageAdapter = Depends(get_storage)):
    return await HierarchyManager(storage).move(page_id, body.new_parent_id)


@app.post("/api/pages/{page_id}/orphan", response_model=List[schemas.PageSummary])
async def orphan_children(page_id: str, storage: StorageAdapter = Depends(get_storage)):
    return await HierarchyManager(storage).orphan(page_id)


@app.post("/api/pages/{page_id}/duplicate", response_model=schemas.Page, status_code=status.HTTP_201_CREATED)
async def duplicate_page(page_id: str, storage: StorageAdapter = Depends(get_storage)):
    return await HierarchyManager(storage).duplicate(page_id)


# Databases
@app.post("/api/databases", response_model=schemas.Database, status_code=status.HTTP_201_CREATED)
async def create_database(body: schemas.DatabaseCreate, storage: StorageAdapter = Depends(get_storage)):
    _, database = await DatabaseService(storage).create_database(
        body.workspace_id,
        body.title,
        parent_page_id=body.parent_page_id,
        icon=body.icon,
        properties=body.properties,
    )
    return database


@app.get("/api/databases/{page_id}", response_model=schemas.Database)
async def get_database(page_id: str, storage: StorageAdapter = Depends(get_storage)):
    return await DatabaseService(storage).get(page_id)


@app.post("/api/databases/{page_id}/rows", response_model=schemas.Row, status_code=status.HTTP_201_CREATED)
async def create_row(page_id: str, body: schemas.RowCreate, storage: StorageAdapter = Depends(get_storage)):
    return await DatabaseService(storage).create_row(page_id, body.values, title=body.title or "Untitled")


@app.get("/api/databases/{page_id}/rows", response_model=List[schemas.RowSummary])
async def list_rows(page_id: str, storage: StorageAdapter = Depends(get_storage)):
    return await DatabaseService(storage).list_rows(page_id)


@app.get("/api/databases/{page_id}/views/{view_id}/rows", response_model=List[schemas.Row])
async def query_view(page_id: str, view_id: str, storage: StorageAdapter = Depends(get_storage)):
    return await DatabaseService(storage).query_view(page_id, view_id)


# Export / import
@app.get("/api/workspaces/{workspace_id}/export")
async def export_workspace(workspace_id: str, storage: StorageAdapter = Depends(get_storage)):
    exported = await storage.export_workspace(workspace_id)
    return _download(
        export_service.serialize_export(exported),
        export_service.workspace_export_filename(),
        "application/json",
    )


@app.get("/api/pages/{page_id}/export")
async def export_page(page_id: str, include_children: bool = True, storage: StorageAdapter = Depends(get_storage)):
    exported = await storage.export_page(page_id, include_children)
    title = exported.pages[0].title if exported.pages else None
    return _download(
        export_service.serialize_export(exported),
        export_service.page_export_filename(title),
        "application/json",
    )


@app.get("/api/pages/{page_id}/markdown")
async def export_page_markdown(page_id: str, storage: StorageAdapter = Depends(get_storage)):
    filename, markdown = await export_service.export_page_markdown(storage, page_id)
    return _download(markdown, filename, "text/markdown")


@app.post("/api/import/validate", response_model=schemas.ExportValidation)
async def validate_import(request: Request):
    return export_service.validate_export_file(await request.body())


@app.post("/api/workspaces/{workspace_id}/import", response_model=schemas.ImportResult)
async def import_workspace(
    workspace_id: str,
    request: Request,
    mode: schemas.ImportMode = "replace",
    storage: StorageAdapter = Depends(get_storage),
):
    return await storage.import_workspace(workspace_id, await request.body(), mode)
