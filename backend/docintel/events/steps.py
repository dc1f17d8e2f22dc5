"""
Step execution with checkpoints.

`step.run(name, fn)` executes fn at most once per run: its JSON-serializable
result is saved under (run_id, name) and every later attempt of the same run
gets the saved value back without calling fn. A step name used twice in one
attempt is disambiguated as "name:1", "name:2", ... in call order, which is
stable across attempts as long as the handler is deterministic.
"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from docintel.events.runs import RunStore

if TYPE_CHECKING:
    from docintel.events.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

StepFn = Callable[[], Union[Any, Awaitable[Any]]]


class StepContext:
    def __init__(self, run_id: str, store: RunStore, orchestrator: "Orchestrator") -> None:
        self.run_id = run_id
        self._store = store
        self._orchestrator = orchestrator
        self._seen: dict[str, int] = {}
        self.executed: list[str] = []   # step names actually run in this attempt

    def _step_key(self, name: str) -> str:
        count = self._seen.get(name, 0)
        self._seen[name] = count + 1
        return name if count == 0 else f"{name}:{count}"

    async def run(self, name: str, fn: StepFn) -> Any:
        key = self._step_key(name)

        found, value = await self._store.load_step(self.run_id, key)
        if found:
            logger.debug("Step memoized | run=%s step=%s", self.run_id, key)
            return value

        value = fn()
        if inspect.isawaitable(value):
            value = await value

        await self._store.save_step(self.run_id, key, value)
        self.executed.append(key)
        logger.debug("Step done | run=%s step=%s", self.run_id, key)
        return value

    async def send_event(self, name: str, event_name: str, data: dict) -> list[str]:
        """Emit an event as a checkpointed step, so retries never re-emit it."""
        return await self.run(name, lambda: self._orchestrator.emit(event_name, data))
