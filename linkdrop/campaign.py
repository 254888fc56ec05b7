"""
Linkdrop Campaigns

The transfer orchestrator: a campaign instance owns its claim ledger and
access state and turns a relay's (receiver, link key, two signatures) into
value movement on the external ledger, exactly once per link key.

Claim pipeline (one serialized slot per campaign instance):

    ┌───────┐   ┌─────────────┐   ┌───────────────┐   ┌─────────────┐
    │ Guard │──▶│ Issuer sig  │──▶│ Receiver sig  │──▶│ Check & set │
    └───────┘   └─────────────┘   └───────────────┘   └──────┬──────┘
                                                             │
                ┌─────────┐   ┌──────────────────┐   ┌───────▼─────┐
                │ Emit    │◀──│ Transfer saga    │◀──│ Pre-flight  │
                │ event   │   │ (compensating)   │   │ funding     │
                └─────────┘   └──────────────────┘   └─────────────┘

Any failure after check-and-set reverses the transfers already made,
releases the claimed flag and re-raises the original error, so the whole
call has no effect. If a transfer cannot be reversed the link key stays
claimed, so it can never pay out a second time. Events are held back until
the claim commits.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from linkdrop.authorization import AuthorizationEngine
from linkdrop.events import (
    EtherWithdrawn,
    EventSink,
    Saga,
    TokensRecovered,
    Withdrawn,
)
from linkdrop.guard import AccessGuard
from linkdrop.hardening import (
    ZERO_ADDRESS,
    AlreadyClaimedError,
    InsufficientAllowance,
    InsufficientBalance,
    LinkdropError,
    NotTokenOwner,
    ValidationError,
    ValidationResult,
    Validators,
    is_zero_address,
    normalize_address,
)
from linkdrop.ledger import ClaimLedger
from linkdrop.observability import LinkdropLayer, get_logger, timed_operation
from linkdrop.schema import ClaimRequest
from linkdrop.token import (
    FungibleLedger,
    NativeCurrency,
    NativeLedger,
    OwnershipRegistry,
    TransferReceipt,
    generate_address,
)
from linkdrop.verifier import SignatureLike

logger = get_logger("campaign", LinkdropLayer.TRANSFER)

TransferStep = Tuple[str, Callable[[], TransferReceipt], Callable[[TransferReceipt], None]]


@dataclass(frozen=True)
class CampaignConfig:
    """
    Immutable campaign parameters.

    ``issuer_address`` is the funds source (the owner at construction time).
    It does not follow later ownership transfers.
    """
    token_address: str
    verification_address: str
    issuer_address: str
    claim_amount: int = 0
    referral_amount: int = 0
    claim_amount_native: int = 0

    def __post_init__(self) -> None:
        self.validate().raise_if_invalid()

    def validate(self) -> ValidationResult:
        errors: List[ValidationError] = []
        for name, allow_zero in (
            ("token_address", False),
            ("verification_address", False),
            ("issuer_address", False),
        ):
            result = Validators.validate_address(getattr(self, name), name, allow_zero=allow_zero)
            if result.is_valid:
                object.__setattr__(self, name, result.sanitized_value)
            else:
                errors.extend(result.errors)
        for name in ("claim_amount", "referral_amount", "claim_amount_native"):
            errors.extend(Validators.validate_amount(getattr(self, name), name).errors)
        if not errors and self.referral_amount > self.claim_amount:
            errors.append(ValidationError(
                "referral_amount",
                f"Referral amount {self.referral_amount} exceeds claim amount {self.claim_amount}",
                self.referral_amount,
            ))
        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(self)


class LinkdropCampaign:
    """State and operations shared by both campaign variants."""

    def __init__(
        self,
        config: CampaignConfig,
        owner: Any,
        address: Optional[str] = None,
        native: Optional[NativeCurrency] = None,
        initial_deposit: int = 0,
        sink: Optional[EventSink] = None,
    ):
        self.config = config
        self.address = normalize_address(address, "address") if address else generate_address("linkdrop")
        self.native = native if native is not None else NativeLedger()
        self.events = sink if sink is not None else EventSink()
        self.guard = AccessGuard(owner, self.events)
        self.authorization = AuthorizationEngine(config.verification_address)
        self._ledger = ClaimLedger()
        self._lock = threading.RLock()
        if initial_deposit:
            self.deposit(initial_deposit)

    # Configuration accessors

    @property
    def token_address(self) -> str:
        return self.config.token_address

    @property
    def claim_amount_native(self) -> int:
        return self.config.claim_amount_native

    @property
    def verification_address(self) -> str:
        return self.config.verification_address

    @property
    def issuer_address(self) -> str:
        return self.config.issuer_address

    # Access state

    @property
    def owner(self) -> str:
        return self.guard.owner

    @property
    def paused(self) -> bool:
        return self.guard.paused

    def pause(self, caller: Any) -> None:
        with self._lock:
            self.guard.pause(caller)

    def unpause(self, caller: Any) -> None:
        with self._lock:
            self.guard.unpause(caller)

    def transfer_ownership(self, caller: Any, new_owner: Any) -> None:
        with self._lock:
            self.guard.transfer_ownership(caller, new_owner)

    # Native currency

    @property
    def balance(self) -> int:
        return self.native.balance_of(self.address)

    def deposit(self, amount: int) -> None:
        """Fund the campaign's native-currency balance."""
        self.native.deposit(self.address, amount)

    def withdraw_ether(self, caller: Any) -> int:
        """Owner-only; send the whole native balance to the owner. Allowed while paused."""
        with self._lock:
            self.guard.require_owner(caller)
            amount = self.balance
            if amount:
                self.native.transfer(self.address, self.owner, amount)
            self.events.emit(EtherWithdrawn(recipient=self.owner, amount=amount))
        logger.info("Native balance withdrawn", recipient=self.owner, amount=amount)
        return amount

    # Claims

    def is_claimed(self, link_key_address: Any) -> bool:
        return self._ledger.is_claimed(link_key_address)

    def verify_receiver_address(
        self,
        link_key_address: Any,
        receiver_address: Any,
        receiver_signature: SignatureLike,
    ) -> bool:
        return self.authorization.verify_receiver_address(
            link_key_address, receiver_address, receiver_signature
        )

    def _native_rebate_step(self, caller: str) -> Optional[TransferStep]:
        amount = self.config.claim_amount_native
        if amount == 0:
            return None
        return (
            "native_rebate",
            lambda: self.native.transfer(self.address, caller, amount),
            self.native.reverse,
        )

    def _check_native_funding(self) -> None:
        required = self.config.claim_amount_native
        available = self.balance
        if available < required:
            raise InsufficientBalance(self.address, available, required)

    def _redeem(
        self,
        caller: Any,
        link_key_address: Any,
        authorize: Callable[[], None],
        preflight: Callable[[], None],
        steps: Callable[[str], List[TransferStep]],
        outcome: Callable[[str], Withdrawn],
    ) -> Withdrawn:
        """
        Run one claim in the campaign's serialized slot.

        ``steps`` builds the value transfers for the normalized caller;
        ``outcome`` builds the Withdrawn record once they have committed.
        """
        with self._lock, self.events.buffer():
            try:
                self.guard.require_not_paused()
                caller = normalize_address(caller, "caller")
                link_key = normalize_address(link_key_address, "link_key_address")
                authorize()

                if not self._ledger.check_and_set(link_key):
                    raise AlreadyClaimedError(link_key)

                saga: Optional[Saga] = None
                try:
                    preflight()
                    self._check_native_funding()
                    saga = Saga(f"claim-{link_key}")
                    for name, action, compensate in steps(caller):
                        saga.add_step(name, action, compensate)
                    rebate = self._native_rebate_step(caller)
                    if rebate is not None:
                        saga.add_step(*rebate)
                    saga.execute()
                except Exception:
                    # The flag is released only when every completed transfer was reversed
                    if saga is not None and saga.compensation_failures:
                        logger.critical(
                            "Claim partially applied; link key stays claimed",
                            error_code="COMPENSATION_FAILED",
                            link_key=link_key,
                            unreversed_steps=list(saga.compensation_failures),
                        )
                    else:
                        self._ledger.release(link_key)
                    raise
            except LinkdropError as exc:
                logger.warning(
                    f"Claim rejected: {exc.reason}",
                    error_code=exc.error_code,
                    link_key=str(link_key_address),
                )
                raise

            event = outcome(caller)
            self.events.emit(event)

        logger.info(
            "Link redeemed",
            link_key=event.link_key_address,
            receiver=event.receiver_address,
            relayer=event.relayer_address,
        )
        return event


# =============================================================================
# FUNGIBLE TOKEN CAMPAIGN
# =============================================================================

class LinkdropERC20(LinkdropCampaign):
    """
    Campaign paying a fixed amount of a fungible token per link.

    The issuer approves the campaign address on the token ledger for the
    total it intends to distribute; claims are pulled with ``transfer_from``.
    """

    def __init__(
        self,
        token: FungibleLedger,
        claim_amount: int,
        referral_amount: int,
        claim_amount_native: int,
        verification_address: Any,
        owner: Any,
        address: Optional[str] = None,
        native: Optional[NativeCurrency] = None,
        initial_deposit: int = 0,
        sink: Optional[EventSink] = None,
    ):
        config = CampaignConfig(
            token_address=token.address,
            verification_address=verification_address,
            issuer_address=owner,
            claim_amount=claim_amount,
            referral_amount=referral_amount,
            claim_amount_native=claim_amount_native,
        )
        super().__init__(config, owner, address, native, initial_deposit, sink)
        self.token = token

    @property
    def claim_amount(self) -> int:
        return self.config.claim_amount

    @property
    def referral_amount(self) -> int:
        return self.config.referral_amount

    def verify_link_key(
        self,
        link_key_address: Any,
        referral_address: Any,
        issuer_signature: SignatureLike,
    ) -> bool:
        return self.authorization.verify_link_key(link_key_address, referral_address, issuer_signature)

    @timed_operation(logger, "withdraw_erc20")
    def withdraw(
        self,
        caller: Any,
        receiver_address: Any,
        referral_address: Any,
        link_key_address: Any,
        issuer_signature: SignatureLike,
        receiver_signature: SignatureLike,
    ) -> Withdrawn:
        """
        Redeem a link: pay ``claim_amount - referral_amount`` to the receiver,
        ``referral_amount`` to the referral, and the native rebate to ``caller``.

        With a zero referral address (or a zero referral amount) the receiver
        gets the full claim amount and no referral transfer is made.
        """
        referral = normalize_address(
            referral_address if referral_address is not None else ZERO_ADDRESS,
            "referral_address",
        )
        receiver = Validators.validate_address(
            receiver_address, "receiver_address", allow_zero=False
        ).unwrap()
        config = self.config
        referral_paid = 0 if is_zero_address(referral) else config.referral_amount
        receiver_paid = config.claim_amount - referral_paid

        def authorize() -> None:
            self.authorization.require_link_key(link_key_address, referral, issuer_signature)
            self.authorization.require_receiver(link_key_address, receiver, receiver_signature)

        def preflight() -> None:
            available = self.token.balance_of(config.issuer_address)
            if available < config.claim_amount:
                raise InsufficientBalance(config.issuer_address, available, config.claim_amount)
            allowed = self.token.allowance(config.issuer_address, self.address)
            if allowed < config.claim_amount:
                raise InsufficientAllowance(
                    config.issuer_address, self.address, allowed, config.claim_amount
                )

        def steps(caller: str) -> List[TransferStep]:
            plan: List[TransferStep] = [(
                "receiver",
                lambda: self.token.transfer_from(
                    self.address, config.issuer_address, receiver, receiver_paid
                ),
                self.token.reverse,
            )]
            if referral_paid:
                plan.append((
                    "referral",
                    lambda: self.token.transfer_from(
                        self.address, config.issuer_address, referral, referral_paid
                    ),
                    self.token.reverse,
                ))
            return plan

        def outcome(caller: str) -> Withdrawn:
            return Withdrawn(
                link_key_address=normalize_address(link_key_address),
                receiver_address=receiver,
                referral_address=referral,
                amount=receiver_paid,
                referral_amount=referral_paid,
                native_amount=config.claim_amount_native,
                relayer_address=caller,
            )

        return self._redeem(caller, link_key_address, authorize, preflight, steps, outcome)

    def claim(self, caller: Any, request: ClaimRequest) -> Withdrawn:
        """Redeem a schema-validated claim request."""
        return self.withdraw(
            caller,
            request.receiver_address,
            request.referral_address or ZERO_ADDRESS,
            request.link_key_address,
            request.issuer_signature,
            request.receiver_signature,
        )

    def withdraw_tokens(self, caller: Any) -> int:
        """Owner-only; recover tokens held at the campaign address itself."""
        with self._lock:
            self.guard.require_owner(caller)
            amount = self.token.balance_of(self.address)
            if amount:
                self.token.transfer(self.address, self.owner, amount)
            self.events.emit(TokensRecovered(
                ledger_address=self.token.address, recipient=self.owner, amount=amount,
            ))
        logger.info("Stranded tokens recovered", recipient=self.owner, amount=amount)
        return amount


# =============================================================================
# OWNERSHIP REGISTRY CAMPAIGN
# =============================================================================

class LinkdropERC721(LinkdropCampaign):
    """
    Campaign handing out individual tokens of an ownership registry.

    The issuer signs a link either for one token id or for the link key
    alone, which lets the relayer pick any token the issuer still owns. The
    issuer approves the campaign (per token or as operator) beforehand.
    """

    def __init__(
        self,
        nft: OwnershipRegistry,
        claim_amount_native: int,
        verification_address: Any,
        owner: Any,
        address: Optional[str] = None,
        native: Optional[NativeCurrency] = None,
        initial_deposit: int = 0,
        sink: Optional[EventSink] = None,
    ):
        config = CampaignConfig(
            token_address=nft.address,
            verification_address=verification_address,
            issuer_address=owner,
            claim_amount_native=claim_amount_native,
        )
        super().__init__(config, owner, address, native, initial_deposit, sink)
        self.nft = nft

    def verify_link_key(self, link_key_address: Any, token_id: int, issuer_signature: SignatureLike) -> bool:
        return self.authorization.verify_link_key_token(link_key_address, token_id, issuer_signature)

    @timed_operation(logger, "withdraw_erc721")
    def withdraw(
        self,
        caller: Any,
        receiver_address: Any,
        token_id: int,
        link_key_address: Any,
        issuer_signature: SignatureLike,
        receiver_signature: SignatureLike,
    ) -> Withdrawn:
        """Redeem a link: move ``token_id`` from the issuer to the receiver."""
        receiver = Validators.validate_address(
            receiver_address, "receiver_address", allow_zero=False
        ).unwrap()
        token_id = Validators.validate_amount(token_id, "token_id").unwrap()
        issuer = self.config.issuer_address

        def authorize() -> None:
            self.authorization.require_link_key_token(link_key_address, token_id, issuer_signature)
            self.authorization.require_receiver(link_key_address, receiver, receiver_signature)

        def preflight() -> None:
            if self.nft.owner_of(token_id) != issuer:
                raise NotTokenOwner(token_id, f"{issuer} no longer owns it")
            if not self.nft.is_approved(self.address, token_id):
                raise NotTokenOwner(token_id, f"campaign {self.address} is not approved")

        def steps(caller: str) -> List[TransferStep]:
            return [(
                "token",
                lambda: self.nft.transfer_from(self.address, issuer, receiver, token_id),
                self.nft.reverse,
            )]

        def outcome(caller: str) -> Withdrawn:
            return Withdrawn(
                link_key_address=normalize_address(link_key_address),
                receiver_address=receiver,
                token_id=token_id,
                native_amount=self.config.claim_amount_native,
                relayer_address=caller,
            )

        return self._redeem(caller, link_key_address, authorize, preflight, steps, outcome)

    def claim(self, caller: Any, request: ClaimRequest) -> Withdrawn:
        if request.token_id is None:
            raise ValidationError("token_id", "Required for ownership-registry campaigns")
        return self.withdraw(
            caller,
            request.receiver_address,
            request.token_id,
            request.link_key_address,
            request.issuer_signature,
            request.receiver_signature,
        )
