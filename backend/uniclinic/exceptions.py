"""
Domain error taxonomy.

Services raise these; ``main.py`` maps each class to an HTTP response.
Storage failures (``SQLAlchemyError``) are not part of the
hierarchy and propagate to the caller unchanged.
"""
from typing import Dict, List, Optional


class ClinicError(Exception):
    status_code = 400
    error_code = "CLINIC_ERROR"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"message": self.message, "error_code": self.error_code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ClinicError):
    """One or more request fields are missing or malformed."""
    status_code = 422
    error_code = "VALIDATION_ERROR"

    def __init__(self, errors: Dict[str, List[str]], message: str = "The given data was invalid."):
        self.errors = errors
        super().__init__(message)

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["errors"] = self.errors
        return body

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        """Convert a pydantic ``ValidationError`` into per-field messages."""
        errors: Dict[str, List[str]] = {}
        for err in exc.errors():
            field = ".".join(str(part) for part in err["loc"]) or "__root__"
            errors.setdefault(field, []).append(err["msg"])
        return cls(errors)


class MissingRequiredField(ValidationError):
    error_code = "MISSING_REQUIRED_FIELD"

    def __init__(self, fields: List[str], role: str):
        self.fields = fields
        super().__init__({f: [f"The {f} field is required for the {role} role."] for f in fields})


class DomainNotAllowed(ValidationError):
    error_code = "DOMAIN_NOT_ALLOWED"

    def __init__(self, role: str):
        super().__init__({"email": [f"Email must be from a university domain for the {role} role."]})


class DuplicateKey(ValidationError):
    error_code = "DUPLICATE_KEY"

    def __init__(self, field: str):
        self.field = field
        super().__init__({field: [f"The {field} has already been taken."]})


class InvalidRole(ClinicError):
    status_code = 400
    error_code = "INVALID_ROLE"


class Forbidden(ClinicError):
    status_code = 403
    error_code = "FORBIDDEN"


class ForbiddenFieldChange(Forbidden):
    error_code = "INVALID_UPDATE"

    def __init__(self, fields: List[str], message: Optional[str] = None):
        self.fields = fields
        super().__init__(
            message or "Clinical staff cannot reassign doctors or patients",
            {"fields": fields},
        )


class NotFound(ClinicError):
    status_code = 404
    error_code = "NOT_FOUND"


class InvalidTransition(ClinicError):
    status_code = 409
    error_code = "INVALID_TRANSITION"


class PrescriptionConflict(ClinicError):
    status_code = 409
    error_code = "PRESCRIPTION_CONFLICT"


class PrecedingReassignmentRequired(ClinicError):
    status_code = 409
    error_code = "PRECEDING_REASSIGNMENT_REQUIRED"
