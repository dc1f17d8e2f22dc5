"""
Transports — how a queued run reaches a worker.

  CeleryTransport   one `execute_function` task per run; retries are Celery
                    retries with exponential countdown (see workers.tasks)
  InlineTransport   in-process FIFO, drained explicitly with `drain()`;
                    retries re-enter the queue immediately
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docintel.events.orchestrator import Orchestrator, RunOutcome

logger = logging.getLogger(__name__)


class Transport(ABC):
    def bind(self, orchestrator: "Orchestrator") -> None:
        self.orchestrator = orchestrator

    @abstractmethod
    async def submit(self, run_id: str, attempt: int) -> None: ...


class CeleryTransport(Transport):
    async def submit(self, run_id: str, attempt: int) -> None:
        # Imported lazily so the API process only needs the broker URL
        from docintel.workers.tasks import execute_function

        execute_function.apply_async(kwargs={"run_id": run_id})
        logger.debug("Run enqueued | run=%s", run_id)


class InlineTransport(Transport):
    def __init__(self, max_deliveries: int = 1000) -> None:
        self.queue: deque[tuple[str, int]] = deque()
        self.max_deliveries = max_deliveries

    async def submit(self, run_id: str, attempt: int) -> None:
        self.queue.append((run_id, attempt))

    async def drain(self) -> list["RunOutcome"]:
        """Execute queued runs (and the runs they emit) until the queue is empty."""
        outcomes: list["RunOutcome"] = []
        while self.queue:
            if len(outcomes) >= self.max_deliveries:
                raise RuntimeError(f"Inline transport exceeded {self.max_deliveries} deliveries")
            run_id, attempt = self.queue.popleft()
            outcome = await self.orchestrator.execute(run_id, attempt)
            outcomes.append(outcome)
            if outcome.status == "retry":
                self.queue.append((run_id, attempt + 1))
        return outcomes
