"""Error taxonomy shared by the token meter, the library and the orchestrator."""

from __future__ import annotations

__all__ = [
    "ChibiLabError",
    "NotFoundError",
    "TokenExhaustedError",
    "ConnectionFailedError",
    "TransactionConflictError",
    "AssetRelocationFailed",
    "GenerationFailedError",
    "ValidationRejectedError",
]


class ChibiLabError(RuntimeError):
    """Base class for errors surfaced to callers of the service layer."""

    default_message = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class NotFoundError(ChibiLabError):
    """Raised when a token or record does not exist."""

    default_message = "Invalid token. Please check and try again."


class TokenExhaustedError(ChibiLabError):
    """Raised when a token has no uses left."""

    default_message = "Your token has expired. Please enter a new one to continue."


class ConnectionFailedError(ChibiLabError):
    """Raised when the record or asset store cannot be reached."""

    default_message = "Could not connect to the server. Please try again."


class TransactionConflictError(ConnectionFailedError):
    """Raised when a transaction could not commit within its retries."""

    default_message = "Failed to update usage count. Please check your connection."


class AssetRelocationFailed(ChibiLabError):
    """Archival could not move an asset; the record is archived regardless."""

    default_message = "Failed to move the stored image while archiving."

    def __init__(self, expression_id: str, cause: BaseException | None = None) -> None:
        detail = f"{self.default_message} (expression {expression_id})"
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(detail)
        self.expression_id = expression_id
        self.cause = cause


class GenerationFailedError(ChibiLabError):
    """Raised when the image backend fails or returns no image."""

    default_message = "Failed to generate image. Please try again."


class ValidationRejectedError(ChibiLabError):
    """Raised when an input precondition is not met."""

    default_message = "The request was rejected."
