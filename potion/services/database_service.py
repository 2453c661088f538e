from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from .. import schemas
from ..exceptions import (
    DatabaseNotFoundError,
    PropertyNotFoundError,
    RowNotFoundError,
    ViewNotFoundError,
)
from ..utils import new_id, now_iso
from .hierarchy import HierarchyManager
from .page_service import PageService
from .query import apply_view

if TYPE_CHECKING:
    from ..storage.base import StorageAdapter

SELECT_TYPES = {"select", "multiSelect"}

PROPERTY_TYPE_LABELS = {
    "text": "Text",
    "number": "Number",
    "date": "Date",
    "checkbox": "Checkbox",
    "select": "Select",
    "multiSelect": "Multi-select",
    "url": "URL",
}


def default_value(prop_type: str) -> Any:
    """Initial value of a property in a new row."""
    if prop_type in ("text", "url"):
        return ""
    if prop_type == "checkbox":
        return False
    if prop_type == "multiSelect":
        return []
    return None


def create_select_option(name: str, color: str = "gray") -> schemas.SelectOption:
    if color not in schemas.SELECT_OPTION_COLORS:
        raise ValueError(f"Unknown option color: {color}")
    return schemas.SelectOption(id=new_id(), name=name, color=color)


def create_property_definition(
    name: str,
    prop_type: schemas.PropertyType,
    options: Optional[Sequence[schemas.SelectOption]] = None,
) -> schemas.PropertyDefinition:
    return schemas.PropertyDefinition(
        id=new_id(),
        name=name,
        type=prop_type,
        options=list(options or []) if prop_type in SELECT_TYPES else None,
    )


def create_view(name: str = "Table View", kind: schemas.ViewKind = "table") -> schemas.DatabaseView:
    return schemas.DatabaseView(id=new_id(), name=name, kind=kind, filters=[], sorts=[])


class DatabaseService:
    def __init__(self, storage: "StorageAdapter"):
        self.storage = storage
        self.pages = PageService(storage)
        self.hierarchy = HierarchyManager(storage)

    # ============================================
    # Schema
    # ============================================

    async def create_database(
        self,
        workspace_id: str,
        title: str,
        parent_page_id: Optional[str] = None,
        icon: Optional[str] = "📊",
        properties: Optional[List[schemas.PropertyDefinition]] = None,
    ) -> Tuple[schemas.Page, schemas.Database]:
        page = await self.pages.create(
            workspace_id, title, parent_page_id=parent_page_id, kind="database", icon=icon
        )
        if properties is None:
            properties = [
                create_property_definition("Name", "text"),
                create_property_definition("Tags", "select"),
            ]
        database = schemas.Database(page_id=page.id, properties=properties, views=[create_view()])
        await self.storage.upsert_database(database)
        return page, database

    async def get(self, page_id: str) -> schemas.Database:
        database = await self.storage.get_database(page_id)
        if database is None:
            raise DatabaseNotFoundError(page_id)
        return database

    async def _touch_rows(self, page_id: str, change) -> None:
        timestamp = now_iso()
        for row in await self.storage.get_rows(page_id):
            values = change(dict(row.values))
            if values != row.values:
                await self.storage.upsert_row(row.model_copy(update={"values": values, "updated_at": timestamp}))

    async def add_property(
        self,
        page_id: str,
        name: str,
        prop_type: schemas.PropertyType,
        options: Optional[Sequence[schemas.SelectOption]] = None,
    ) -> Tuple[schemas.Database, schemas.PropertyDefinition]:
        database = await self.get(page_id)
        prop = create_property_definition(name, prop_type, options)
        updated = database.model_copy(update={"properties": [*database.properties, prop]})
        await self.storage.upsert_database(updated)

        def backfill(values: Dict[str, Any]) -> Dict[str, Any]:
            values.setdefault(prop.id, default_value(prop.type))
            return values

        await self._touch_rows(page_id, backfill)
        return updated, prop

    async def update_property(
        self,
        page_id: str,
        property_id: str,
        name: Optional[str] = None,
        prop_type: Optional[schemas.PropertyType] = None,
        options: Optional[Sequence[schemas.SelectOption]] = None,
    ) -> schemas.Database:
        database = await self.get(page_id)
        current = database.get_property(property_id)
        if current is None:
            raise PropertyNotFoundError(property_id)

        new_type = prop_type or current.type
        new_options = list(options) if options is not None else current.options
        if new_type not in SELECT_TYPES:
            new_options = None
        elif new_options is None:
            new_options = []
        replacement = current.model_copy(update={
            "name": name if name is not None else current.name,
            "type": new_type,
            "options": new_options,
        })
        properties = [replacement if p.id == property_id else p for p in database.properties]
        updated = database.model_copy(update={"properties": properties})
        await self.storage.upsert_database(updated)
        return updated

    async def remove_property(self, page_id: str, property_id: str) -> schemas.Database:
        database = await self.get(page_id)
        if database.get_property(property_id) is None:
            raise PropertyNotFoundError(property_id)
        properties = [p for p in database.properties if p.id != property_id]
        updated = database.model_copy(update={"properties": properties})
        await self.storage.upsert_database(updated)

        def strip(values: Dict[str, Any]) -> Dict[str, Any]:
            values.pop(property_id, None)
            return values

        await self._touch_rows(page_id, strip)
        return updated

    async def update_views(self, page_id: str, views: List[schemas.DatabaseView]) -> schemas.Database:
        database = await self.get(page_id)
        updated = database.model_copy(update={"views": list(views)})
        await self.storage.upsert_database(updated)
        return updated

    async def delete_database(self, page_id: str) -> List[str]:
        await self.get(page_id)
        return await self.hierarchy.delete(page_id, cascade=True)

    # ============================================
    # Rows
    # ============================================

    async def create_row(
        self,
        database_page_id: str,
        values: Optional[Dict[str, Any]] = None,
        title: str = "Untitled",
    ) -> schemas.Row:
        database = await self.get(database_page_id)
        database_page = await self.pages.get(database_page_id)
        detail_page = await self.pages.create(
            database_page.workspace_id, title, parent_page_id=database_page_id, kind="page"
        )

        values = values or {}
        row_values = {
            prop.id: values[prop.id] if prop.id in values else default_value(prop.type)
            for prop in database.properties
        }
        timestamp = now_iso()
        row = schemas.Row(
            id=new_id(),
            database_page_id=database_page_id,
            page_id=detail_page.id,
            values=row_values,
            created_at=timestamp,
            updated_at=timestamp,
        )
        await self.storage.upsert_row(row)
        return row

    async def get_row(self, row_id: str) -> schemas.Row:
        row = await self.storage.get_row(row_id)
        if row is None:
            raise RowNotFoundError(row_id)
        return row

    async def list_rows(self, database_page_id: str) -> List[schemas.RowSummary]:
        return await self.storage.list_rows(database_page_id)

    async def get_full_rows(self, database_page_id: str) -> List[schemas.Row]:
        return await self.storage.get_rows(database_page_id)

    async def update_row_values(self, row_id: str, values: Dict[str, Any]) -> schemas.Row:
        row = await self.get_row(row_id)
        updated = row.model_copy(update={"values": {**row.values, **values}, "updated_at": now_iso()})
        await self.storage.upsert_row(updated)
        return updated

    async def update_row_value(self, row_id: str, property_id: str, value: Any) -> schemas.Row:
        return await self.update_row_values(row_id, {property_id: value})

    async def update_row_title(self, row_id: str, title: str) -> schemas.Page:
        row = await self.get_row(row_id)
        return await self.pages.rename(row.page_id, title)

    async def delete_row(self, row_id: str) -> None:
        row = await self.get_row(row_id)
        if await self.storage.get_page(row.page_id) is not None:
            await self.hierarchy.delete(row.page_id, cascade=True)
        await self.storage.delete_row(row_id)

    # ============================================
    # Views
    # ============================================

    async def query_view(
        self,
        database_page_id: str,
        view_id: Optional[str] = None,
        filters: Optional[Sequence[schemas.Filter]] = None,
        sorts: Optional[Sequence[schemas.Sort]] = None,
    ) -> List[schemas.Row]:
        """
        Rows of a database as a view shows them. Explicit filters/sorts
        override the stored view's.
        """
        database = await self.get(database_page_id)
        view = None
        if view_id is not None:
            view = next((v for v in database.views if v.id == view_id), None)
            if view is None:
                raise ViewNotFoundError(view_id)

        rows = await self.storage.get_rows(database_page_id)
        titles = {summary.id: summary.title for summary in await self.storage.list_rows(database_page_id)}
        return apply_view(
            rows,
            database.properties,
            filters if filters is not None else (view.filters if view else []),
            sorts if sorts is not None else (view.sorts if view else []),
            titles,
        )
