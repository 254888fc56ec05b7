"""
Linkdrop Claim Ledger

Sparse map from link-key address to a claimed flag. It is the only replay
protection in the system and depends on no other state.

Invariant: an entry that became claimed stays claimed. The one exception is
``release``, which the transfer path uses to undo its own check-and-set when
the same serialized operation fails before committing; nothing outside that
operation can clear an entry.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from linkdrop.hardening import InvariantViolation, ValidationError, normalize_address
from linkdrop.observability import LinkdropLayer, get_logger

logger = get_logger("claim_ledger", LinkdropLayer.LEDGER)


class ClaimLedger:
    """
    Registry of redeemed link keys.

    Keys are stored in checksum form so differently-cased spellings of the
    same address cannot be redeemed twice.
    """

    def __init__(self):
        self._claimed: Dict[str, str] = {}  # link key -> claimed_at
        self._lock = threading.Lock()

    def check_and_set(self, link_key_address: Any) -> bool:
        """
        Atomically mark a link key as claimed.

        Returns True if the key was unclaimed and is now claimed.
        Returns False if it was already claimed (replay attempt).
        """
        key = normalize_address(link_key_address, "link_key_address")
        with self._lock:
            if key in self._claimed:
                logger.warning("Replay attempt", error_code="ALREADY_CLAIMED", link_key=key)
                return False
            self._claimed[key] = datetime.now(timezone.utc).isoformat()
            return True

    def release(self, link_key_address: Any) -> None:
        """Undo a check_and_set made by the still-running operation that failed."""
        key = normalize_address(link_key_address, "link_key_address")
        with self._lock:
            if self._claimed.pop(key, None) is None:
                raise InvariantViolation(f"Release of unclaimed link key {key}")
        logger.info("Claim flag rolled back", link_key=key)

    def is_claimed(self, link_key_address: Any) -> bool:
        key = normalize_address(link_key_address, "link_key_address")
        with self._lock:
            return key in self._claimed

    def claimed_at(self, link_key_address: Any) -> Optional[str]:
        key = normalize_address(link_key_address, "link_key_address")
        with self._lock:
            return self._claimed.get(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._claimed)

    def __contains__(self, link_key_address: object) -> bool:
        try:
            return self.is_claimed(link_key_address)
        except ValidationError:
            return False
