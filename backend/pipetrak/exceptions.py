"""
Exceptions raised by the progress core.

Row-level validation failures (``InvalidIdentity``, ``InvalidQuantity``) are
recoverable: the import pipeline records them against the row and keeps going.
``MissingTemplate`` is fatal for the component whose progress is being
computed. ``ConcurrentUpdate`` comes from the persistence boundary when a
write carries a stale version.
"""
from typing import Optional


class ProgressCoreError(Exception):
    """Base exception for every error raised by the progress core."""

    pass


class RowValidationError(ProgressCoreError):
    """
    An import row failed validation.

    ``row`` is the 1-based row number in the take-off, when known.
    """

    def __init__(self, message: str, row: Optional[int] = None, drawing: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.row = row
        self.drawing = drawing

    def to_detail(self) -> dict:
        detail = {"row": self.row or 0, "issue": self.message, "kind": type(self).__name__}
        if self.drawing:
            detail["drawing"] = self.drawing
        return detail


class InvalidIdentity(RowValidationError):
    """
    Raised when a row lacks a required identity field.

    Example:
        A spool row with an empty commodity code has no spool_id.
    """

    pass


class DuplicateIdentity(InvalidIdentity):
    """
    Raised when a non-aggregating identity already exists in the batch or
    among the live components of the project.
    """

    pass


class InvalidQuantity(RowValidationError):
    """
    Raised when ``qty <= 0`` (or a non-integer qty for an exploded type).

    Reported as a warning: the row is skipped and the batch continues.
    """

    pass


class MissingTemplate(ProgressCoreError):
    """Raised when no progress template exists for a component type."""

    def __init__(self, component_type: str, template_id: Optional[str] = None):
        target = f"template {template_id!r}" if template_id else f"type {component_type!r}"
        super().__init__(f"No progress template configured for {target}")
        self.component_type = component_type
        self.template_id = template_id


class InvalidMilestoneUpdate(ProgressCoreError):
    """Raised when a milestone write does not fit the template's milestone kind."""

    def __init__(self, milestone_name: str, reason: str):
        super().__init__(f"Invalid update for milestone {milestone_name!r}: {reason}")
        self.milestone_name = milestone_name
        self.reason = reason


class ComponentNotFound(ProgressCoreError):
    """Raised when a component id does not resolve to a stored row."""

    def __init__(self, component_id: str):
        super().__init__(f"Component {component_id} not found")
        self.component_id = component_id


class ConcurrentUpdate(ProgressCoreError):
    """
    Raised when a write names a version that no longer matches the stored row.

    The caller must reload the component and retry; nothing is merged.
    """

    def __init__(self, component_id: str, expected_version: int, actual_version: Optional[int] = None):
        super().__init__(
            f"Component {component_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.component_id = component_id
        self.expected_version = expected_version
        self.actual_version = actual_version
