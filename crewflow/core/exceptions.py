"""
Application-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and get
consistent HTTP status codes everywhere.

Usage:
    from crewflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Contract", resource_id=42)
    raise ValidationError("obligation is invalid", details={"obligation": "XX"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Contract", "Training").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class MatrixFormatError(ValidationError):
    """Raised when an uploaded matrix workbook cannot be imported at all.

    Covers the whole-request rejections: missing/short sheet, no training
    columns, training ids unknown to the catalog, unsupported layout version.
    Raised before any write happens.  Maps to HTTP 400.
    """


class ConflictError(Exception):
    """Raised when an operation would duplicate an existing record.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field (or field combination) that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
