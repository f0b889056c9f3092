from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol


class _ServerTimestamp:
    """Placeholder resolved to epoch milliseconds by the store at write time."""

    _instance: "_ServerTimestamp | None" = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


class _Abort:
    _instance: "_Abort | None" = None

    def __new__(cls) -> "_Abort":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABORT"


SERVER_TIMESTAMP = _ServerTimestamp()

# Returned by a transaction step to finish without writing.
ABORT = _Abort()

TransactionStep = Callable[[Any], Any]
ChangeCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]


@dataclass(frozen=True)
class TransactionResult:
    committed: bool
    value: Any
    attempts: int = 1


class Subscription(Protocol):
    @property
    def closed(self) -> bool:
        ...

    def close(self) -> None:
        """Stop delivering notifications. Safe to call more than once."""


class RecordStoreProtocol(Protocol):
    async def get(self, path: str) -> Any:
        ...

    async def set(self, path: str, value: Any) -> None:
        ...

    async def update(self, changes: Mapping[str, Any]) -> None:
        """Apply every path in ``changes`` atomically; ``None`` deletes."""

    async def transaction(self, path: str, step: TransactionStep) -> TransactionResult:
        """Atomic read-modify-write; ``step`` may run again if the store is busy."""

    def subscribe(
        self,
        path: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Subscription:
        ...


__all__ = [
    "ABORT",
    "SERVER_TIMESTAMP",
    "ChangeCallback",
    "ErrorCallback",
    "RecordStoreProtocol",
    "Subscription",
    "TransactionResult",
    "TransactionStep",
]
