"""
Linkdrop Access Guard

Ownership and the pause switch, as an explicit ``AccessState`` that every
state-mutating campaign operation consults at the top of its body.

State machine:

    Active ──pause()──▶ Paused
    Paused ──unpause()─▶ Active

Both transitions are owner-only. A redundant transition fails
(``PausedError`` / ``NotPausedError``) instead of silently succeeding.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Optional

from linkdrop.events import EventSink, OwnershipTransferred, Paused, Unpaused
from linkdrop.hardening import (
    CryptoUtils,
    NotOwnerError,
    NotPausedError,
    PausedError,
    Validators,
)
from linkdrop.observability import LinkdropLayer, get_logger

logger = get_logger("access_guard", LinkdropLayer.GUARD)


@dataclass
class AccessState:
    owner: str
    paused: bool = False


class AccessGuard:
    """Owner-only and pause preconditions over a single ``AccessState``."""

    def __init__(self, owner: Any, sink: Optional[EventSink] = None):
        owner = Validators.validate_address(owner, "owner", allow_zero=False).unwrap()
        self.state = AccessState(owner=owner)
        self._sink = sink if sink is not None else EventSink()
        self._lock = threading.RLock()

    @property
    def owner(self) -> str:
        return self.state.owner

    @property
    def paused(self) -> bool:
        return self.state.paused

    def is_owner(self, caller: Any) -> bool:
        return CryptoUtils.same_address(caller, self.state.owner)

    def require_owner(self, caller: Any) -> None:
        if not self.is_owner(caller):
            logger.warning("Owner-only operation rejected", error_code="NOT_OWNER", caller=str(caller))
            raise NotOwnerError(str(caller))

    def require_not_paused(self) -> None:
        if self.state.paused:
            logger.warning("Operation rejected while paused", error_code="PAUSED")
            raise PausedError()

    def pause(self, caller: Any) -> None:
        with self._lock:
            self.require_owner(caller)
            if self.state.paused:
                raise PausedError("Campaign is already paused")
            self.state.paused = True
        logger.info("Campaign paused", account=self.state.owner)
        self._sink.emit(Paused(account=self.state.owner))

    def unpause(self, caller: Any) -> None:
        with self._lock:
            self.require_owner(caller)
            if not self.state.paused:
                raise NotPausedError()
            self.state.paused = False
        logger.info("Campaign unpaused", account=self.state.owner)
        self._sink.emit(Unpaused(account=self.state.owner))

    def transfer_ownership(self, caller: Any, new_owner: Any) -> None:
        new_owner = Validators.validate_address(new_owner, "new_owner", allow_zero=False).unwrap()
        with self._lock:
            self.require_owner(caller)
            previous = self.state.owner
            self.state.owner = new_owner
        logger.info("Ownership transferred", previous_owner=previous, new_owner=new_owner)
        self._sink.emit(OwnershipTransferred(previous_owner=previous, new_owner=new_owner))
