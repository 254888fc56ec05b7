"""
Linkdrop Event Infrastructure

Outcome records for external observers, a synchronous pub/sub bus, an
append-only event log, and the compensating saga the transfer path uses to
keep a claim all-or-nothing.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          EVENT INFRASTRUCTURE                            │
    │                                                                          │
    │  Domain Events        Event Log             Saga                         │
    │  ├─ Withdrawn         ├─ Append-only        ├─ Ordered steps             │
    │  ├─ Transfer          ├─ Query by type      ├─ Compensation on failure   │
    │  ├─ Paused/Unpaused   └─ Digest per event   └─ Reverse-order rollback    │
    │  └─ OwnershipTransferred                                                 │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Usage
─────

    log = EventLog()
    bus = EventBus()

    @bus.subscribe(Withdrawn)
    def index_claim(event: Withdrawn):
        print(f"{event.link_key_address} claimed by {event.receiver_address}")

    sink = EventSink(log, bus)
    sink.emit(Withdrawn(link_key_address=..., receiver_address=...))

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import json
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Set,
    Type,
    TypeVar,
)

from linkdrop.hardening import ZERO_ADDRESS
from linkdrop.observability import LinkdropLayer, get_correlation_id, get_logger

logger = get_logger("events", LinkdropLayer.EVENTS)

E = TypeVar("E", bound="Event")


def canonical_json_bytes(obj: Any) -> bytes:
    """Canonical JSON bytes: sorted keys, no whitespace, UTF-8, floats rejected."""
    def _reject_floats(o: Any, path: str = "") -> None:
        if isinstance(o, float):
            raise ValueError(f"Float not allowed in canonical JSON at {path}")
        if isinstance(o, dict):
            for k, v in o.items():
                _reject_floats(v, f"{path}.{k}")
        if isinstance(o, list):
            for i, v in enumerate(o):
                _reject_floats(v, f"{path}[{i}]")

    _reject_floats(obj)
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all events.

    Events are immutable facts. Each has a unique ID, a timestamp and the
    correlation ID of the request that produced it.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = None

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str, sort_keys=True)

    def digest(self) -> str:
        """Deterministic digest of the event content."""
        return hashlib.sha256(canonical_json_bytes(self.to_dict())).hexdigest()


# ════════════════════════════════════════════════════════════════════════════
# DOMAIN EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Withdrawn(Event):
    """A link was redeemed."""
    link_key_address: str = ""
    receiver_address: str = ""
    referral_address: str = ZERO_ADDRESS
    token_id: Optional[int] = None
    amount: int = 0
    referral_amount: int = 0
    native_amount: int = 0
    relayer_address: str = ""


@dataclass
class Transfer(Event):
    """Value moved on a value ledger (fungible amount or a single token id)."""
    ledger_address: str = ""
    sender: str = ""
    recipient: str = ""
    amount: int = 0
    token_id: Optional[int] = None


@dataclass
class Approval(Event):
    ledger_address: str = ""
    owner: str = ""
    spender: str = ""
    amount: int = 0
    token_id: Optional[int] = None


@dataclass
class Paused(Event):
    account: str = ""


@dataclass
class Unpaused(Event):
    account: str = ""


@dataclass
class OwnershipTransferred(Event):
    previous_owner: str = ""
    new_owner: str = ""


@dataclass
class EtherWithdrawn(Event):
    recipient: str = ""
    amount: int = 0


@dataclass
class TokensRecovered(Event):
    ledger_address: str = ""
    recipient: str = ""
    amount: int = 0


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class EventHandlerRegistration:
    handler: EventHandler
    event_types: Set[Type[Event]]
    priority: int = 0


class EventHandlerError(Exception):
    """Error during event handling."""
    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        super().__init__(f"Handler {getattr(handler, '__name__', handler)} failed for {event.event_type}: {cause}")


class EventBus:
    """
    In-memory synchronous pub/sub bus.

    Subscribers observe committed outcomes only; a failing subscriber is
    reported through ``on_error`` and never rolls back the outcome.
    """

    def __init__(self, on_error: Optional[Callable[[EventHandlerError], None]] = None):
        self._handlers: List[EventHandlerRegistration] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._published_count = 0
        self._error_count = 0

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
    ) -> Callable[[EventHandler], EventHandler]:
        """Decorator to subscribe a handler (higher priority runs first)."""
        def decorator(handler: EventHandler) -> EventHandler:
            registration = EventHandlerRegistration(
                handler=handler,
                event_types=set(event_types) if event_types else {Event},
                priority=priority,
            )
            with self._lock:
                self._handlers.append(registration)
                self._handlers.sort(key=lambda r: -r.priority)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            original_len = len(self._handlers)
            self._handlers = [r for r in self._handlers if r.handler != handler]
            return len(self._handlers) < original_len

    def publish(self, event: Event) -> None:
        with self._lock:
            self._published_count += 1
            handlers = [
                r.handler for r in self._handlers
                if any(isinstance(event, t) for t in r.event_types)
            ]

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                with self._lock:
                    self._error_count += 1
                error = EventHandlerError(event, handler, e)
                logger.error(str(error), error_code="EVENT_HANDLER", exc_info=True)
                if self._on_error:
                    self._on_error(error)

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "published_count": self._published_count,
                "error_count": self._error_count,
                "handler_count": len(self._handlers),
            }


# ════════════════════════════════════════════════════════════════════════════
# EVENT LOG
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class EventRecord:
    """A persisted event record."""
    sequence_number: int
    event: Event
    recorded_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "event": self.event.to_dict(),
            "recorded_at": self.recorded_at,
        }


class EventLog:
    """Append-only log of emitted events."""

    def __init__(self):
        self._records: List[EventRecord] = []
        self._lock = threading.RLock()

    def append(self, event: Event) -> EventRecord:
        with self._lock:
            record = EventRecord(sequence_number=len(self._records) + 1, event=event)
            self._records.append(record)
            return record

    def read_all(self, from_position: int = 0, max_count: int = 1000) -> List[EventRecord]:
        with self._lock:
            return self._records[from_position:from_position + max_count]

    def of_type(self, event_type: Type[E]) -> List[E]:
        with self._lock:
            return [r.event for r in self._records if isinstance(r.event, event_type)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class EventSink:
    """
    Where components emit events: records to a log, then publishes on a bus.

    ``buffer()`` holds events back until the surrounding operation commits,
    so a rolled-back claim leaves no trace for observers.
    """

    def __init__(self, log: Optional[EventLog] = None, bus: Optional[EventBus] = None):
        self.log = log if log is not None else EventLog()
        self.bus = bus
        self._local = threading.local()

    def emit(self, event: Event) -> None:
        if event.correlation_id is None:
            event.correlation_id = get_correlation_id()
        pending = getattr(self._local, "pending", None)
        if pending is not None:
            pending.append(event)
            return
        self._commit(event)

    def _commit(self, event: Event) -> None:
        self.log.append(event)
        if self.bus is not None:
            self.bus.publish(event)

    def buffer(self) -> "_EventBuffer":
        return _EventBuffer(self)


class _EventBuffer:
    """Context manager: emit buffered events on success, drop them on error."""

    def __init__(self, sink: EventSink):
        self._sink = sink
        self._outer: Optional[List[Event]] = None

    def __enter__(self) -> "_EventBuffer":
        self._outer = getattr(self._sink._local, "pending", None)
        self._sink._local.pending = []
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        pending = self._sink._local.pending
        self._sink._local.pending = self._outer
        if exc_type is not None:
            return
        if self._outer is not None:
            self._outer.extend(pending)
            return
        for event in pending:
            self._sink._commit(event)


# ════════════════════════════════════════════════════════════════════════════
# SAGA COORDINATOR
# ════════════════════════════════════════════════════════════════════════════


class SagaState(Enum):
    """Saga execution states."""
    PENDING = auto()
    RUNNING = auto()
    COMPLETED = auto()
    COMPENSATING = auto()
    FAILED = auto()


@dataclass
class SagaStep:
    """A step in a saga. ``action`` returns whatever ``compensate`` needs."""
    name: str
    action: Callable[[], Any]
    compensate: Optional[Callable[[Any], None]] = None


class Saga:
    """
    Ordered steps with compensation on failure.

    Unlike a fire-and-forget workflow, ``execute`` re-raises the failing
    step's exception after compensating, so callers see the original error
    class.

    Example:
        saga = Saga("claim-0xabc")
        saga.add_step("receiver", pay_receiver, token.reverse)
        saga.add_step("referral", pay_referral, token.reverse)
        saga.execute()
    """

    def __init__(self, saga_id: str):
        self.saga_id = saga_id
        self._steps: List[SagaStep] = []
        self._completed: List[tuple] = []
        self._state = SagaState.PENDING
        self._error: Optional[Exception] = None
        self.compensation_failures: List[str] = []

    @property
    def state(self) -> SagaState:
        return self._state

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    @property
    def completed_steps(self) -> List[str]:
        return [step.name for step, _ in self._completed]

    def add_step(
        self,
        name: str,
        action: Callable[[], Any],
        compensate: Optional[Callable[[Any], None]] = None,
    ) -> "Saga":
        self._steps.append(SagaStep(name, action, compensate))
        return self

    def execute(self) -> List[Any]:
        """Run every step; returns their results in order."""
        self._state = SagaState.RUNNING

        for step in self._steps:
            try:
                result = step.action()
            except Exception as e:
                self._error = e
                self._state = SagaState.COMPENSATING
                self._compensate()
                self._state = SagaState.FAILED
                raise
            self._completed.append((step, result))

        self._state = SagaState.COMPLETED
        return [result for _, result in self._completed]

    def _compensate(self) -> None:
        """Run compensation for completed steps in reverse order."""
        for step, result in reversed(self._completed):
            if step.compensate is None:
                continue
            try:
                step.compensate(result)
            except Exception as exc:
                self.compensation_failures.append(step.name)
                logger.critical(
                    f"Saga {self.saga_id} compensation step {step.name} failed: {exc}",
                    error_code="COMPENSATION_FAILED",
                    exc_info=True,
                )
