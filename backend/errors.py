# errors.py
class IntakeError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    kind = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"status": "error", "error": self.message, "kind": self.kind}


class ValidationError(IntakeError):
    status_code = 400
    kind = "validation"


class NotFoundError(IntakeError):
    status_code = 404
    kind = "not_found"


class UpstreamError(IntakeError):
    """The language model call failed (network, quota, bad response...)."""

    status_code = 502
    kind = "upstream"


class UpstreamTimeoutError(UpstreamError):
    status_code = 504
    kind = "upstream_timeout"


class ContentBlockedError(UpstreamError):
    kind = "content_blocked"


class StoreError(IntakeError):
    kind = "store"
