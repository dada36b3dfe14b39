class BookingError(Exception):
    """
    Base for errors returned synchronously to the caller of a core operation.
    Rendered by the app-level error handler as {"error": ..., "code": ...}.
    """
    status_code = 400
    code = "booking_error"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        out = {"error": self.message, "code": self.code}
        out.update(self.extra)
        return out


class FormatError(BookingError):
    # malformed time/date input; "fix your input"
    status_code = 400
    code = "format_error"


class ConflictError(BookingError):
    # overlap with a commitment or a lost reservation race; "pick another time"
    status_code = 409
    code = "conflict"

    def __init__(self, message: str, conflicts=None, suggestions=None, **extra):
        super().__init__(message, **extra)
        self.conflicts = list(conflicts or [])
        self.suggestions = list(suggestions or [])

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["conflicts"] = [c.to_dict() if hasattr(c, "to_dict") else c for c in self.conflicts]
        out["suggestions"] = self.suggestions
        return out


class NotFoundError(BookingError):
    status_code = 404
    code = "not_found"


class DuplicateKeyError(BookingError):
    status_code = 409
    code = "duplicate_key"


class AnomalyWarning(UserWarning):
    """
    A payment notification tried to move a terminal status to a different
    terminal status. Recorded for operators; never blocks other records.
    """

    def __init__(self, external_reference: str, current_status: str, attempted_status: str):
        self.external_reference = external_reference
        self.current_status = current_status
        self.attempted_status = attempted_status
        super().__init__(
            f"Payment {external_reference}: refusing transition "
            f"{current_status} -> {attempted_status}"
        )

    def to_dict(self) -> dict:
        return {
            "external_reference": self.external_reference,
            "current_status": self.current_status,
            "attempted_status": self.attempted_status,
        }
