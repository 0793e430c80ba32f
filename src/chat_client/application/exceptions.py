from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ForbiddenError(AppError):
    pass


class ConflictError(AppError):
    pass


class ValidationError(AppError):
    pass


class AuthenticationError(AppError):
    pass


class ApiError(AppError):
    """Non-2xx REST response without a more specific mapping."""

    def __init__(self, status: int, detail: str = "") -> None:
        self.status = status
        super().__init__(detail)


class ChannelConnectionError(AppError):
    """Realtime channel could not be established or was lost.

    ``retryable`` is False when the server rejected the session token; the
    channel stops reconnecting in that case.
    """

    def __init__(self, detail: str = "", *, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(detail)


class OutboxFullError(AppError):
    pass


class PeerOfflineError(AppError):
    pass


class CallStateError(ConflictError):
    pass


class UploadError(ValidationError):
    pass


class SendFailure(AppError):
    pass
