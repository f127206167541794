"""Best-effort undo actions registered during a run.

Only the deployment trigger registers one today (restore the installer
gate flag). A compensation failure is logged and swallowed so the caller
always sees the original error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompensationOutcome:
    name: str
    succeeded: bool
    error: str | None = None


@dataclass
class CompensationManager:
    """LIFO stack of compensating actions for one run."""

    _actions: list[tuple[str, Callable[[], Awaitable[object]]]] = field(default_factory=list)

    def register(self, name: str, action: Callable[[], Awaitable[object]]) -> None:
        self._actions.append((name, action))

    def discard(self, name: str) -> None:
        """Drop ``name`` once the side effect it guards is committed."""
        self._actions = [(n, a) for n, a in self._actions if n != name]

    async def run(self) -> list[CompensationOutcome]:
        """Run every registered action (most recent first), then clear."""
        outcomes: list[CompensationOutcome] = []
        while self._actions:
            name, action = self._actions.pop()
            try:
                await action()
            except Exception as exc:
                logger.warning(
                    'Compensation failed',
                    extra={'compensation': name, 'error': str(exc)},
                )
                outcomes.append(CompensationOutcome(name=name, succeeded=False, error=str(exc)))
                continue
            logger.info('Compensation applied', extra={'compensation': name})
            outcomes.append(CompensationOutcome(name=name, succeeded=True))
        return outcomes
