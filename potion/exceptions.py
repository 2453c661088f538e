from typing import List, Optional


class AppException(Exception):
    """Base application exception."""
    pass


class NotFoundError(AppException):
    """Raised when a referenced entity does not exist."""

    entity = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} not found: {entity_id}")


class WorkspaceNotFoundError(NotFoundError):
    entity = "Workspace"


class PageNotFoundError(NotFoundError):
    entity = "Page"


class DatabaseNotFoundError(NotFoundError):
    entity = "Database"


class RowNotFoundError(NotFoundError):
    entity = "Row"


class PropertyNotFoundError(NotFoundError):
    entity = "Property"


class ViewNotFoundError(NotFoundError):
    entity = "View"


class StructuralViolationError(AppException):
    """Raised when an operation would break the page tree invariants."""
    pass


class SelfParentError(StructuralViolationError):
    def __init__(self, page_id: str):
        self.page_id = page_id
        super().__init__(f"Cannot move page to itself: {page_id}")


class CycleDetectedError(StructuralViolationError):
    def __init__(self, page_id: str, new_parent_id: str):
        self.page_id = page_id
        self.new_parent_id = new_parent_id
        super().__init__(
            f"Cannot move page {page_id} under its own descendant {new_parent_id}"
        )


class CrossWorkspaceMoveError(StructuralViolationError):
    def __init__(self, page_id: str, new_parent_id: str):
        self.page_id = page_id
        self.new_parent_id = new_parent_id
        super().__init__(
            f"Cannot move page {page_id} under {new_parent_id}: parent belongs to another workspace"
        )


class HasChildrenError(StructuralViolationError):
    def __init__(self, page_id: str, child_count: int):
        self.page_id = page_id
        self.child_count = child_count
        super().__init__(
            f"Page {page_id} still has {child_count} child page(s); orphan them or delete with cascade"
        )


class HierarchyCorruptionError(StructuralViolationError):
    """Raised when stored parent links already form a cycle."""

    def __init__(self, page_id: str, path: Optional[List[str]] = None):
        self.page_id = page_id
        self.path = path or []
        super().__init__(f"Corrupt page hierarchy: parent chain loops at {page_id}")


class UninitializedError(AppException):
    """Raised when the storage adapter is used before init() completed."""

    def __init__(self, message: str = "Storage not initialized. Call init() first."):
        super().__init__(message)


class ValidationFailureError(AppException):
    """Raised for malformed input such as import documents; carries every problem found."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Validation failed")


class MigrationError(AppException):
    """Raised when a schema migration fails or is registered twice."""
    pass
