from __future__ import annotations

import logging
from typing import Optional

from ..errors import ChibiLabError, ConnectionFailedError, NotFoundError, TokenExhaustedError
from ..state import USER_TOKEN, LocalState
from .meter import TokenMeter

logger = logging.getLogger(__name__)

EXPIRED_MESSAGE = "This token has expired. Please enter a new one."
INVALID_MESSAGE = "Invalid token. Please check and try again."
VALIDATION_OFFLINE_MESSAGE = "Could not connect to the server to validate your token."
USED_UP_MESSAGE = "Your token has expired. Please enter a new one to continue."
METERING_FAILED_MESSAGE = "Failed to update token usage."


class TokenGate:
    """Session-side view of the current access token.

    Keeps the cached use count the orchestrator checks before each
    generation. Unknown or exhausted tokens are forgotten; connection
    failures keep the token so the caller can retry.
    """

    def __init__(self, meter: TokenMeter, state: LocalState) -> None:
        self.meter = meter
        self.state = state
        self.uses = 0
        self.is_validated = False
        self.error: Optional[str] = None

    @property
    def token(self) -> Optional[str]:
        return self.state.token

    @property
    def can_generate(self) -> bool:
        return self.is_validated and self.uses > 0

    def require_uses(self) -> None:
        if not self.can_generate:
            raise TokenExhaustedError(self.error or USED_UP_MESSAGE)

    async def set_token(self, token: str) -> bool:
        cleaned = token.strip()
        if not cleaned:
            self.clear()
            self.error = INVALID_MESSAGE
            return False
        self.state.set(USER_TOKEN, cleaned)
        return await self.refresh()

    async def refresh(self) -> bool:
        token = self.token
        self.error = None
        if not token:
            self.uses = 0
            self.is_validated = False
            return False
        try:
            status = await self.meter.validate(token)
        except NotFoundError:
            self._reject(INVALID_MESSAGE)
            return False
        except ConnectionFailedError as exc:
            logger.warning("token validation failed: %s", exc)
            self.uses = 0
            self.is_validated = False
            self.error = VALIDATION_OFFLINE_MESSAGE
            return False
        if status.exhausted:
            self._reject(EXPIRED_MESSAGE)
            return False
        self.uses = status.uses_remaining
        self.is_validated = True
        return True

    def _reject(self, message: str) -> None:
        self.state.remove(USER_TOKEN)
        self.uses = 0
        self.is_validated = False
        self.error = message

    def clear(self) -> None:
        self.state.remove(USER_TOKEN)
        self.uses = 0
        self.is_validated = False
        self.error = None

    async def record_use(self) -> Optional[ChibiLabError]:
        """Meter one successful generation; returns the failure instead of raising."""

        token = self.token
        if not token:
            return None
        try:
            status = await self.meter.decrement_uses(token)
        except ChibiLabError as exc:
            logger.error("failed to decrement token uses: %s", exc)
            self.error = exc.message or METERING_FAILED_MESSAGE
            return exc
        self.uses = status.uses_remaining
        if status.exhausted:
            self.clear()
            self.error = USED_UP_MESSAGE
        return None


__all__ = ["TokenGate"]
