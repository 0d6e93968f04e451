"""
Error taxonomy shared by the services, the HTTP layer and the socket server.

Services raise these; routes turn them into HTTP responses through the
handler registered in ``nettrack.main`` and socket events turn them into
``{"ok": False, "error": ..., "code": ...}`` payloads.
"""


class NetTrackError(ValueError):
    """Base class for expected, user-facing failures."""

    code = "error"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_payload(self) -> dict:
        return {"ok": False, "error": self.message, "code": self.code}


class ValidationError(NetTrackError):
    code = "validation"
    status_code = 400


class NotFoundError(NetTrackError):
    code = "not_found"
    status_code = 404


class ForbiddenError(NetTrackError):
    code = "forbidden"
    status_code = 403


class ConflictError(NetTrackError):
    code = "conflict"
    status_code = 409


class TransientError(NetTrackError):
    """An upstream service or network call failed; the caller may retry."""

    code = "transient"
    status_code = 502

    def __init__(self, service: str, message: str = "service unavailable"):
        self.service = service
        super().__init__(f"{service}: {message}")
