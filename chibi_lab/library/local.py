from __future__ import annotations

import logging
from typing import Any, Callable, List

from ..errors import NotFoundError
from ..state import EXPRESSION_HISTORY, LocalState
from .models import Expression, expressions_from_snapshot

logger = logging.getLogger(__name__)


class LocalLibrary:
    """Expression history kept in device-local state, newest first.

    The local copy stores the full image payload inline and has no archive:
    delete and clear remove entries outright.
    """

    def __init__(self, state: LocalState) -> None:
        self.state = state

    def _load(self) -> List[Expression]:
        raw = self.state.get(EXPRESSION_HISTORY, [])
        if isinstance(raw, dict):
            return expressions_from_snapshot(raw)
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed expression history in local state")
            return []
        items: List[Expression] = []
        for entry in raw:
            try:
                items.append(Expression.from_record(entry))
            except (AttributeError, ValueError) as exc:
                logger.warning("Skipping unreadable history entry: %s", exc)
        return items

    def _save(self, items: List[Expression]) -> None:
        self.state.set(EXPRESSION_HISTORY, [item.to_record() for item in items])

    def _mutate(self, change: Callable[[List[Expression]], List[Expression]]) -> List[Expression]:
        items = change(self._load())
        self._save(items)
        return items

    def snapshot(self) -> List[Expression]:
        return self._load()

    async def list(self) -> List[Expression]:
        return self.snapshot()

    async def add(self, expression: Expression) -> Expression:
        self._mutate(lambda items: [expression] + [item for item in items if item.id != expression.id])
        return expression

    async def update(self, expression: Expression) -> Expression:
        items = self._load()
        if not any(item.id == expression.id for item in items):
            raise NotFoundError(f"No expression with id {expression.id}.")
        self._save([expression if item.id == expression.id else item for item in items])
        return expression

    async def delete(self, expression_id: str) -> Any:
        self._mutate(lambda items: [item for item in items if item.id != expression_id])
        return None

    async def clear(self) -> List[Any]:
        self._save([])
        return []


__all__ = ["LocalLibrary"]
