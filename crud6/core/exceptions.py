"""Error taxonomy surfaced at the request boundary."""

from typing import Dict, Iterable, List, Optional

from crud6.core.response.schemas import ErrorDetail


class CRUD6Exception(Exception):
    """Base exception carrying an HTTP status and an error code."""

    status_code: int = 500
    error_code: str = "ERROR"

    def __init__(
        self,
        detail: str = "",
        error_details: Optional[List[ErrorDetail]] = None,
    ):
        super().__init__(detail)
        self.detail = detail
        self.error_details = error_details or []


class SchemaNotFound(CRUD6Exception):
    """No schema resource exists for the requested model."""

    status_code = 404
    error_code = "SCHEMA_NOT_FOUND"


class SchemaValidationError(CRUD6Exception):
    """A schema resource is structurally malformed (server misconfiguration)."""

    status_code = 500
    error_code = "SCHEMA_INVALID"


class RelationshipConfigurationError(CRUD6Exception):
    status_code = 500
    error_code = "RELATIONSHIP_CONFIGURATION"


class RecordNotFound(CRUD6Exception):
    status_code = 404
    error_code = "NOT_FOUND"


class AuthorizationDenied(CRUD6Exception):
    status_code = 403
    error_code = "FORBIDDEN"


class BadRequest(CRUD6Exception):
    status_code = 400
    error_code = "BAD_REQUEST"


class ConflictError(CRUD6Exception):
    status_code = 409
    error_code = "CONFLICT"


class ValidationFailed(CRUD6Exception):
    """Input failed schema-declared rules; carries every field violation."""

    status_code = 422
    error_code = "VALIDATION_ERROR"

    def __init__(self, errors: Dict[str, Iterable[str]], detail: str = "Validation failed"):
        self.errors = {field: list(messages) for field, messages in errors.items()}
        error_details = [
            ErrorDetail(field=field, code="INVALID", message=message)
            for field, messages in self.errors.items()
            for message in messages
        ]
        super().__init__(detail, error_details)


class RepositoryError(CRUD6Exception):
    """The database rejected an operation."""

    status_code = 500
    error_code = "DATABASE_ERROR"
