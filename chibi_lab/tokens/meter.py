"""Validation and atomic metering of access tokens."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..db.repo.interfaces import ABORT, RecordStoreProtocol
from ..db.repo.paths import is_key_segment, join_path
from ..errors import NotFoundError, ValidationRejectedError

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "ExpressionCreator"


@dataclass(frozen=True)
class TokenStatus:
    token: str
    uses_remaining: int

    @property
    def exhausted(self) -> bool:
        return self.uses_remaining <= 0


def _is_counter(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def decrement_step(current: Any) -> Any:
    """Transaction step: absent -> 0, positive -> minus one, otherwise unchanged.

    Anything that is not a plain counter aborts without writing.
    """

    if current is None:
        return 0
    if not _is_counter(current):
        return ABORT
    if current > 0:
        return current - 1
    return current


class TokenMeter:
    """Reads and decrements the shared ``keys/{token}`` usage counters."""

    def __init__(self, records: RecordStoreProtocol, *, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.records = records
        self.namespace = namespace

    def _path(self, token: str) -> str:
        cleaned = token.strip() if isinstance(token, str) else ""
        if not is_key_segment(cleaned):
            raise NotFoundError()
        return join_path(self.namespace, "keys", cleaned)

    async def validate(self, token: str) -> TokenStatus:
        path = self._path(token)
        value = await self.records.get(path)
        if value is None:
            raise NotFoundError()
        if not _is_counter(value):
            logger.warning("token record at %s is not a counter; treating it as invalid", path)
            raise NotFoundError()
        return TokenStatus(token=token.strip(), uses_remaining=value)

    async def decrement_uses(self, token: str) -> TokenStatus:
        path = self._path(token)
        result = await self.records.transaction(path, decrement_step)
        if not result.committed:
            logger.warning("token record at %s is not a counter; decrement aborted", path)
            raise NotFoundError()
        remaining = result.value if _is_counter(result.value) else 0
        logger.info("token uses decremented (remaining=%d, attempts=%d)", remaining, result.attempts)
        return TokenStatus(token=token.strip(), uses_remaining=remaining)

    async def issue(self, token: str, uses: int) -> TokenStatus:
        """Operator helper: write a fresh counter for ``token``."""

        if isinstance(uses, bool) or not isinstance(uses, int) or uses < 0:
            raise ValidationRejectedError("Token uses must be a non-negative whole number.")
        try:
            path = self._path(token)
        except NotFoundError as exc:
            raise ValidationRejectedError(
                "Tokens cannot be blank or contain '/', '.', '#', '$', '[' or ']'."
            ) from exc
        await self.records.set(path, uses)
        logger.info("issued token with %d uses", uses)
        return TokenStatus(token=token.strip(), uses_remaining=uses)


__all__ = ["DEFAULT_NAMESPACE", "TokenMeter", "TokenStatus", "decrement_step"]
