"""
Linkdrop Value Ledgers

The value-transfer ledger is an external collaborator. This module pins down
the interface the transfer path relies on and provides in-memory
implementations (a fungible token, an ownership registry and a native-currency
ledger) for tests, tooling and embedding applications.

Interface:

    FungibleLedger      balance_of / allowance / approve / transfer / transfer_from
    OwnershipRegistry   owner_of / approve / set_approval_for_all / transfer_from
    NativeLedger        balance_of / deposit / transfer

Every mutating call returns a ``TransferReceipt``; ``reverse(receipt)`` is the
compensation hook used when a later step of the same claim fails.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Protocol, Set, Tuple, runtime_checkable

from eth_utils import keccak, to_checksum_address

from linkdrop.events import Approval, EventSink, Transfer
from linkdrop.hardening import (
    InsufficientAllowance,
    InsufficientBalance,
    InvariantViolation,
    NotTokenOwner,
    ValidationError,
    Validators,
    ZERO_ADDRESS,
    normalize_address,
)
from linkdrop.observability import LinkdropLayer, get_logger

logger = get_logger("value_ledger", LinkdropLayer.TOKEN)


def generate_address(label: str = "") -> str:
    """A fresh, unique address for an in-memory contract or account."""
    return to_checksum_address(keccak(text=f"{label}:{uuid.uuid4()}")[-20:])


@dataclass(frozen=True)
class TransferReceipt:
    """Proof that a ledger moved value. Consumed by ``reverse``."""
    ledger_address: str
    sender: str
    recipient: str
    amount: int = 0
    token_id: Optional[int] = None
    spender: Optional[str] = None
    receipt_id: str = field(default_factory=lambda: uuid.uuid4().hex)


# =============================================================================
# COLLABORATOR PROTOCOLS
# =============================================================================

@runtime_checkable
class FungibleLedger(Protocol):
    address: str

    def balance_of(self, owner: str) -> int: ...

    def allowance(self, owner: str, spender: str) -> int: ...

    def transfer(self, sender: str, recipient: str, amount: int) -> TransferReceipt: ...

    def transfer_from(self, spender: str, sender: str, recipient: str, amount: int) -> TransferReceipt: ...

    def reverse(self, receipt: TransferReceipt) -> None: ...


@runtime_checkable
class OwnershipRegistry(Protocol):
    address: str

    def owner_of(self, token_id: int) -> str: ...

    def is_approved(self, spender: str, token_id: int) -> bool: ...

    def transfer_from(self, spender: str, sender: str, recipient: str, token_id: int) -> TransferReceipt: ...

    def reverse(self, receipt: TransferReceipt) -> None: ...


@runtime_checkable
class NativeCurrency(Protocol):

    def balance_of(self, owner: str) -> int: ...

    def transfer(self, sender: str, recipient: str, amount: int) -> TransferReceipt: ...

    def reverse(self, receipt: TransferReceipt) -> None: ...


# =============================================================================
# FUNGIBLE TOKEN
# =============================================================================

class InMemoryERC20:
    """
    Fungible token with ERC20 semantics.

    The whole initial supply is minted to ``owner``. Transfers to the zero
    address are rejected; zero-amount transfers succeed and are recorded.
    """

    def __init__(
        self,
        owner: str,
        initial_supply: int,
        address: Optional[str] = None,
        sink: Optional[EventSink] = None,
        symbol: str = "MOCK",
    ):
        self.address = normalize_address(address) if address else generate_address("erc20")
        self.symbol = symbol
        self._sink = sink if sink is not None else EventSink()
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._total_supply = 0
        self._lock = threading.RLock()
        self.mint(owner, initial_supply)

    @property
    def events(self) -> EventSink:
        return self._sink

    @property
    def total_supply(self) -> int:
        with self._lock:
            return self._total_supply

    def mint(self, recipient: str, amount: int) -> None:
        recipient = Validators.validate_address(recipient, "recipient", allow_zero=False).unwrap()
        amount = Validators.validate_amount(amount).unwrap()
        with self._lock:
            self._balances[recipient] = self._balances.get(recipient, 0) + amount
            self._total_supply += amount
        self._sink.emit(Transfer(
            ledger_address=self.address, sender=ZERO_ADDRESS, recipient=recipient, amount=amount,
        ))

    def balance_of(self, owner: str) -> int:
        owner = normalize_address(owner, "owner")
        with self._lock:
            return self._balances.get(owner, 0)

    def allowance(self, owner: str, spender: str) -> int:
        key = (normalize_address(owner, "owner"), normalize_address(spender, "spender"))
        with self._lock:
            return self._allowances.get(key, 0)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        owner = normalize_address(owner, "owner")
        spender = Validators.validate_address(spender, "spender", allow_zero=False).unwrap()
        amount = Validators.validate_amount(amount).unwrap()
        with self._lock:
            self._allowances[(owner, spender)] = amount
        self._sink.emit(Approval(
            ledger_address=self.address, owner=owner, spender=spender, amount=amount,
        ))

    def transfer(self, sender: str, recipient: str, amount: int) -> TransferReceipt:
        return self._move(None, sender, recipient, amount)

    def transfer_from(self, spender: str, sender: str, recipient: str, amount: int) -> TransferReceipt:
        return self._move(normalize_address(spender, "spender"), sender, recipient, amount)

    def _move(
        self,
        spender: Optional[str],
        sender: str,
        recipient: str,
        amount: int,
    ) -> TransferReceipt:
        sender = normalize_address(sender, "sender")
        recipient = Validators.validate_address(recipient, "recipient", allow_zero=False).unwrap()
        amount = Validators.validate_amount(amount).unwrap()

        with self._lock:
            balance = self._balances.get(sender, 0)
            if balance < amount:
                raise InsufficientBalance(sender, balance, amount)
            if spender is not None:
                allowed = self._allowances.get((sender, spender), 0)
                if allowed < amount:
                    raise InsufficientAllowance(sender, spender, allowed, amount)
                self._allowances[(sender, spender)] = allowed - amount
            self._balances[sender] = balance - amount
            self._balances[recipient] = self._balances.get(recipient, 0) + amount

        receipt = TransferReceipt(
            ledger_address=self.address,
            sender=sender,
            recipient=recipient,
            amount=amount,
            spender=spender,
        )
        self._sink.emit(Transfer(
            ledger_address=self.address, sender=sender, recipient=recipient, amount=amount,
        ))
        return receipt

    def reverse(self, receipt: TransferReceipt) -> None:
        """Undo a transfer made by this ledger, restoring any spent allowance."""
        if receipt.ledger_address != self.address:
            raise InvariantViolation(f"Receipt {receipt.receipt_id} is not from ledger {self.address}")
        with self._lock:
            held = self._balances.get(receipt.recipient, 0)
            if held < receipt.amount:
                raise InvariantViolation(
                    f"Cannot reverse {receipt.receipt_id}: recipient holds {held} < {receipt.amount}"
                )
            self._balances[receipt.recipient] = held - receipt.amount
            self._balances[receipt.sender] = self._balances.get(receipt.sender, 0) + receipt.amount
            if receipt.spender is not None:
                key = (receipt.sender, receipt.spender)
                self._allowances[key] = self._allowances.get(key, 0) + receipt.amount
        logger.info("Transfer reversed", receipt_id=receipt.receipt_id, amount=receipt.amount)
        self._sink.emit(Transfer(
            ledger_address=self.address,
            sender=receipt.recipient,
            recipient=receipt.sender,
            amount=receipt.amount,
        ))


# =============================================================================
# OWNERSHIP REGISTRY
# =============================================================================

class InMemoryERC721:
    """Ownership registry with ERC721 semantics (single and operator approvals)."""

    def __init__(
        self,
        owner: str,
        token_ids: Iterable[int] = (),
        address: Optional[str] = None,
        sink: Optional[EventSink] = None,
    ):
        self.address = normalize_address(address) if address else generate_address("erc721")
        self._sink = sink if sink is not None else EventSink()
        self._owners: Dict[int, str] = {}
        self._token_approvals: Dict[int, str] = {}
        self._operators: Set[Tuple[str, str]] = set()
        self._lock = threading.RLock()
        for token_id in token_ids:
            self.mint(owner, token_id)

    @property
    def events(self) -> EventSink:
        return self._sink

    def mint(self, recipient: str, token_id: int) -> None:
        recipient = Validators.validate_address(recipient, "recipient", allow_zero=False).unwrap()
        token_id = Validators.validate_amount(token_id, "token_id").unwrap()
        with self._lock:
            if token_id in self._owners:
                raise ValidationError("token_id", "Token already minted", token_id)
            self._owners[token_id] = recipient
        self._sink.emit(Transfer(
            ledger_address=self.address, sender=ZERO_ADDRESS, recipient=recipient, token_id=token_id,
        ))

    def owner_of(self, token_id: int) -> str:
        with self._lock:
            owner = self._owners.get(token_id)
        if owner is None:
            raise NotTokenOwner(token_id, "nonexistent token")
        return owner

    def balance_of(self, owner: str) -> int:
        owner = normalize_address(owner, "owner")
        with self._lock:
            return sum(1 for holder in self._owners.values() if holder == owner)

    def approve(self, owner: str, spender: str, token_id: int) -> None:
        owner = normalize_address(owner, "owner")
        spender = normalize_address(spender, "spender")
        with self._lock:
            if self.owner_of(token_id) != owner:
                raise NotTokenOwner(token_id, f"{owner} is not the owner")
            self._token_approvals[token_id] = spender
        self._sink.emit(Approval(
            ledger_address=self.address, owner=owner, spender=spender, token_id=token_id,
        ))

    def set_approval_for_all(self, owner: str, operator: str, approved: bool) -> None:
        key = (normalize_address(owner, "owner"), normalize_address(operator, "operator"))
        with self._lock:
            if approved:
                self._operators.add(key)
            else:
                self._operators.discard(key)

    def is_approved(self, spender: str, token_id: int) -> bool:
        """True if ``spender`` may move ``token_id`` on the owner's behalf."""
        spender = normalize_address(spender, "spender")
        with self._lock:
            owner = self.owner_of(token_id)
            return (
                spender == owner
                or self._token_approvals.get(token_id) == spender
                or (owner, spender) in self._operators
            )

    def transfer_from(self, spender: str, sender: str, recipient: str, token_id: int) -> TransferReceipt:
        spender = normalize_address(spender, "spender")
        sender = normalize_address(sender, "sender")
        recipient = Validators.validate_address(recipient, "recipient", allow_zero=False).unwrap()

        with self._lock:
            if self.owner_of(token_id) != sender:
                raise NotTokenOwner(token_id, f"{sender} is not the owner")
            if not self.is_approved(spender, token_id):
                raise NotTokenOwner(token_id, f"{spender} is not approved")
            previous_approval = self._token_approvals.pop(token_id, None)
            self._owners[token_id] = recipient

        receipt = TransferReceipt(
            ledger_address=self.address,
            sender=sender,
            recipient=recipient,
            token_id=token_id,
            spender=previous_approval,
        )
        self._sink.emit(Transfer(
            ledger_address=self.address, sender=sender, recipient=recipient, token_id=token_id,
        ))
        return receipt

    def reverse(self, receipt: TransferReceipt) -> None:
        if receipt.ledger_address != self.address or receipt.token_id is None:
            raise InvariantViolation(f"Receipt {receipt.receipt_id} is not from ledger {self.address}")
        with self._lock:
            if self._owners.get(receipt.token_id) != receipt.recipient:
                raise InvariantViolation(
                    f"Cannot reverse {receipt.receipt_id}: token {receipt.token_id} moved on"
                )
            self._owners[receipt.token_id] = receipt.sender
            if receipt.spender is not None:
                self._token_approvals[receipt.token_id] = receipt.spender
        self._sink.emit(Transfer(
            ledger_address=self.address,
            sender=receipt.recipient,
            recipient=receipt.sender,
            token_id=receipt.token_id,
        ))


# =============================================================================
# NATIVE CURRENCY
# =============================================================================

class NativeLedger:
    """Native-currency balances, as held by accounts and contracts."""

    LEDGER_ADDRESS = ZERO_ADDRESS

    def __init__(self):
        self._balances: Dict[str, int] = {}
        self._lock = threading.RLock()

    def deposit(self, recipient: str, amount: int) -> None:
        """Credit value arriving from outside the ledger (e.g. a funding payment)."""
        recipient = normalize_address(recipient, "recipient")
        amount = Validators.validate_amount(amount).unwrap()
        with self._lock:
            self._balances[recipient] = self._balances.get(recipient, 0) + amount

    def balance_of(self, owner: str) -> int:
        owner = normalize_address(owner, "owner")
        with self._lock:
            return self._balances.get(owner, 0)

    def transfer(self, sender: str, recipient: str, amount: int) -> TransferReceipt:
        sender = normalize_address(sender, "sender")
        recipient = normalize_address(recipient, "recipient")
        amount = Validators.validate_amount(amount).unwrap()
        with self._lock:
            balance = self._balances.get(sender, 0)
            if balance < amount:
                raise InsufficientBalance(sender, balance, amount)
            self._balances[sender] = balance - amount
            self._balances[recipient] = self._balances.get(recipient, 0) + amount
        return TransferReceipt(
            ledger_address=self.LEDGER_ADDRESS,
            sender=sender,
            recipient=recipient,
            amount=amount,
        )

    def reverse(self, receipt: TransferReceipt) -> None:
        with self._lock:
            held = self._balances.get(receipt.recipient, 0)
            if held < receipt.amount:
                raise InvariantViolation(
                    f"Cannot reverse {receipt.receipt_id}: recipient holds {held} < {receipt.amount}"
                )
            self._balances[receipt.recipient] = held - receipt.amount
            self._balances[receipt.sender] = self._balances.get(receipt.sender, 0) + receipt.amount
