from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .utils import parse_timestamp

CURRENT_FORMAT_VERSION = 1
CURRENT_BLOCK_FORMAT_VERSION = 1
CURRENT_SCHEMA_VERSION = 1

# Pseudo-property id that addresses a row's detail-page title in filters and sorts
TITLE_PROPERTY_ID = "title"

PageKind = Literal["page", "database"]
PropertyType = Literal["text", "number", "date", "checkbox", "select", "multiSelect", "url"]
FilterOperator = Literal[
    "equals", "notEquals", "contains", "notContains",
    "isEmpty", "isNotEmpty", "gt", "gte", "lt", "lte",
]
SortDirection = Literal["asc", "desc"]
ViewKind = Literal["table", "list"]
ImportMode = Literal["replace", "merge"]
ThemePreference = Literal["light", "dark", "system"]
EditorWidth = Literal["narrow", "medium", "wide", "full"]

SELECT_OPTION_COLORS = (
    "gray", "brown", "orange", "yellow", "green", "blue", "purple", "pink", "red",
)


def _aliased(name: str, *legacy: str) -> Dict[str, Any]:
    """Field kwargs accepting the camelCase key plus legacy keys on input."""
    return dict(
        validation_alias=AliasChoices(to_camel(name), name, *legacy),
        serialization_alias=to_camel(name),
    )


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TimestampedModel(CamelModel):
    created_at: str
    updated_at: str

    @field_validator("created_at", "updated_at")
    @classmethod
    def _check_timestamp(cls, value: str) -> str:
        if parse_timestamp(value) is None:
            raise ValueError(f"not an ISO-8601 timestamp: {value!r}")
        return value


# ============================================
# Block content
# ============================================

class InlineStyle(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    bold: Optional[bool] = None
    italic: Optional[bool] = None
    underline: Optional[bool] = None
    strikethrough: Optional[bool] = None
    code: Optional[bool] = None


class InlineContent(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str = "text"
    text: str = ""
    styles: Optional[InlineStyle] = None
    href: Optional[str] = None


class Block(CamelModel):
    """
    One editor block. The core only stores, copies and flattens blocks, so
    unknown block types and extra keys are kept as they are.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str = ""
    type: str = "paragraph"
    # Table blocks carry a {"type": "tableContent", "rows": [...]} mapping instead of inline runs
    content: Union[List[InlineContent], Dict[str, Any]] = Field(default_factory=list)
    props: Dict[str, Any] = Field(default_factory=dict)
    children: List["Block"] = Field(default_factory=list)


class BlockDocument(CamelModel):
    format_version: int = Field(CURRENT_BLOCK_FORMAT_VERSION, **_aliased("format_version", "version"))
    blocks: List[Block] = Field(default_factory=list)


Block.model_rebuild()


# ============================================
# Workspace & pages
# ============================================

class Workspace(TimestampedModel):
    id: str
    name: str
    schema_version: int = Field(CURRENT_SCHEMA_VERSION, **_aliased("schema_version", "version"))


class PageSummary(TimestampedModel):
    id: str
    workspace_id: str
    parent_page_id: Optional[str] = None
    title: str = ""
    kind: PageKind = Field("page", **_aliased("kind", "type"))
    is_favorite: bool = False
    icon: Optional[str] = None
    cover_image: Optional[str] = None


class Page(PageSummary):
    content: BlockDocument = Field(default_factory=BlockDocument)

    def summary(self) -> PageSummary:
        return PageSummary(**self.model_dump(exclude={"content"}))


class TreeNode(PageSummary):
    children: List["TreeNode"] = Field(default_factory=list)


TreeNode.model_rebuild()


# ============================================
# Databases & rows
# ============================================

class SelectOption(CamelModel):
    id: str
    name: str
    color: str = "gray"


class PropertyDefinition(CamelModel):
    id: str
    name: str
    type: PropertyType
    options: Optional[List[SelectOption]] = None


class Filter(CamelModel):
    property_id: str
    operator: FilterOperator
    value: Any = None


class Sort(CamelModel):
    property_id: str
    direction: SortDirection = "asc"


class DatabaseView(CamelModel):
    id: str
    name: str
    kind: ViewKind = Field("table", **_aliased("kind", "type"))
    filters: List[Filter] = Field(default_factory=list)
    sorts: List[Sort] = Field(default_factory=list)


class Database(CamelModel):
    page_id: str
    properties: List[PropertyDefinition] = Field(default_factory=list)
    views: List[DatabaseView] = Field(default_factory=list)

    def get_property(self, property_id: str) -> Optional[PropertyDefinition]:
        for prop in self.properties:
            if prop.id == property_id:
                return prop
        return None


class Row(TimestampedModel):
    id: str
    database_page_id: str
    page_id: str
    values: Dict[str, Any] = Field(default_factory=dict)


class RowSummary(TimestampedModel):
    id: str
    database_page_id: str
    page_id: str
    title: str = "Untitled"


# ============================================
# Settings
# ============================================

class Settings(CamelModel):
    id: str = "default"
    theme: ThemePreference = "system"
    font_size: int = 16
    editor_width: EditorWidth = "medium"
    sidebar_collapsed: bool = False


# ============================================
# Export / import
# ============================================

class WorkspaceExport(CamelModel):
    format_version: int = Field(CURRENT_FORMAT_VERSION, **_aliased("format_version", "version"))
    exported_at: str
    workspace: Workspace
    pages: List[Page] = Field(default_factory=list)
    databases: List[Database] = Field(default_factory=list)
    rows: List[Row] = Field(default_factory=list)
    settings: Optional[Settings] = None


class ImportConflict(CamelModel):
    entity_kind: Literal["page", "row"] = Field(..., **_aliased("entity_kind", "type"))
    id: str
    local_updated_at: str
    imported_updated_at: str
    local_title: str
    imported_title: str


class ImportResult(CamelModel):
    success: bool = True
    pages_added: int = 0
    pages_updated: int = 0
    databases_added: int = 0
    databases_updated: int = 0
    rows_added: int = 0
    rows_updated: int = 0
    conflicts: List[ImportConflict] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class ExportValidation(CamelModel):
    valid: bool
    format_version: Any = None
    page_count: int = 0
    workspace_name: Optional[str] = None
    exported_at: Optional[str] = None
    errors: List[str] = Field(default_factory=list)


class StorageStats(CamelModel):
    workspace_count: int = 0
    page_count: int = 0
    database_count: int = 0
    row_count: int = 0
    estimated_size_bytes: int = 0


class MigrationRecord(CamelModel):
    version: int
    name: str
    applied_at: str
    success: bool
    error: Optional[str] = None
    backup_path: Optional[str] = None


# ============================================
# API request bodies
# ============================================

class PageCreate(CamelModel):
    workspace_id: str
    title: str = "Untitled"
    parent_page_id: Optional[str] = None
    kind: PageKind = "page"
    icon: Optional[str] = None


class PageUpdate(CamelModel):
    title: Optional[str] = None
    content: Optional[BlockDocument] = None
    icon: Optional[str] = None
    cover_image: Optional[str] = None
    is_favorite: Optional[bool] = None


class MoveRequest(CamelModel):
    new_parent_id: Optional[str] = None


class DatabaseCreate(CamelModel):
    workspace_id: str
    title: str = "Untitled"
    parent_page_id: Optional[str] = None
    icon: Optional[str] = None
    properties: Optional[List[PropertyDefinition]] = None


class RowCreate(CamelModel):
    values: Dict[str, Any] = Field(default_factory=dict)
    title: Optional[str] = None
