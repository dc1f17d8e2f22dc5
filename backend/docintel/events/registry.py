"""
Function registry — which handler runs for which event.

    @registry.create_function(
        "extract-document-text",
        event=TEXT_EXTRACT,
        retries=2,
        idempotency=lambda data: data["documentId"],
        on_failure=mark_failed,
    )
    async def extract_document_text(ctx: FunctionContext) -> dict: ...

A function is triggered either by an event name or by a cron expression,
never both. `retries` is the number of retries after the first attempt.
`idempotency` derives a key from the event data; two events with the same
key for the same function inside the idempotency window produce one run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterator, Optional

if TYPE_CHECKING:
    from docintel.events.orchestrator import FunctionContext

Handler           = Callable[["FunctionContext"], Awaitable[Any]]
FailureHandler    = Callable[["FunctionContext"], Awaitable[None]]
IdempotencyKeyFn  = Callable[[dict], Optional[str]]


@dataclass(frozen=True)
class FunctionDef:
    id:          str
    handler:     Handler
    event:       str | None = None
    cron:        str | None = None
    retries:     int = 0
    idempotency: IdempotencyKeyFn | None = None
    on_failure:  FailureHandler | None = None

    def idempotency_key(self, data: dict) -> str | None:
        if self.idempotency is None:
            return None
        key = self.idempotency(data)
        return str(key) if key is not None else None


class FunctionRegistry:
    def __init__(self) -> None:
        self._functions: dict[str, FunctionDef] = {}

    def create_function(
        self,
        id: str,
        *,
        event: str | None = None,
        cron: str | None = None,
        retries: int = 0,
        idempotency: IdempotencyKeyFn | None = None,
        on_failure: FailureHandler | None = None,
    ) -> Callable[[Handler], Handler]:
        if (event is None) == (cron is None):
            raise ValueError(f"Function {id!r} needs exactly one trigger: event or cron")
        if retries < 0:
            raise ValueError("retries must be >= 0")

        def decorator(handler: Handler) -> Handler:
            if id in self._functions:
                raise ValueError(f"Function {id!r} is already registered")
            self._functions[id] = FunctionDef(
                id=id,
                handler=handler,
                event=event,
                cron=cron,
                retries=retries,
                idempotency=idempotency,
                on_failure=on_failure,
            )
            return handler

        return decorator

    def get(self, function_id: str) -> FunctionDef:
        try:
            return self._functions[function_id]
        except KeyError:
            raise KeyError(f"Unknown function: {function_id}") from None

    def subscribers(self, event_name: str) -> list[FunctionDef]:
        return [fn for fn in self._functions.values() if fn.event == event_name]

    def cron_functions(self) -> list[FunctionDef]:
        return [fn for fn in self._functions.values() if fn.cron is not None]

    def __iter__(self) -> Iterator[FunctionDef]:
        return iter(self._functions.values())

    def __contains__(self, function_id: str) -> bool:
        return function_id in self._functions

    def __len__(self) -> int:
        return len(self._functions)


# Process-wide registry; pipeline modules register into it on import
registry = FunctionRegistry()
