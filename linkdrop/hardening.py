"""
Linkdrop Validation and Hardening Module

Error taxonomy and input validation shared by every Linkdrop component.
It addresses:

1. The claim failure taxonomy (authorization, replay, guard, funding)
2. Input validation with normalization (addresses, amounts, signatures)
3. Constant-time comparison of identities

Security Model:
    - All inputs are untrusted until validated
    - Identities are compared in canonical form only
    - All state mutations are atomic or compensated
    - Failures are raised, never swallowed or re-categorized

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hmac
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from eth_utils import is_checksum_address, to_checksum_address


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# secp256k1 group order
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2

SIGNATURE_LENGTH = 65


# =============================================================================
# ERROR TYPES
# =============================================================================

class LinkdropError(Exception):
    """Base exception for every claim-path failure."""

    error_code = "LINKDROP"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ValidationError(LinkdropError):
    """Malformed input."""

    error_code = "VALIDATION"

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class ValidationErrors(ValidationError):
    """Collection of validation errors."""

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        messages = "; ".join(f"{e.field}: {e.message}" for e in errors)
        LinkdropError.__init__(self, f"Validation failed: {messages}")
        self.field = errors[0].field if errors else ""
        self.message = messages
        self.value = None


class AuthorizationError(LinkdropError):
    """A signature in the claim does not verify."""

    error_code = "AUTHORIZATION"


class LinkKeyNotSigned(AuthorizationError):
    error_code = "AUTH_LINK_KEY"

    def __init__(self, reason: str = "Link key is not signed by linkdrop verification key"):
        super().__init__(reason)


class ReceiverNotSigned(AuthorizationError):
    error_code = "AUTH_RECEIVER"

    def __init__(self, reason: str = "Receiver address is not signed by link key"):
        super().__init__(reason)


class AlreadyClaimedError(LinkdropError):
    """The link key was redeemed before. Permanent."""

    error_code = "ALREADY_CLAIMED"

    def __init__(self, link_key_address: str):
        self.link_key_address = link_key_address
        super().__init__("Link key has already been used")


class GuardError(LinkdropError):
    """Pause or ownership precondition failed."""

    error_code = "GUARD"


class PausedError(GuardError):
    error_code = "PAUSED"

    def __init__(self, reason: str = "Campaign is paused"):
        super().__init__(reason)


class NotPausedError(GuardError):
    error_code = "NOT_PAUSED"

    def __init__(self, reason: str = "Campaign is not paused"):
        super().__init__(reason)


class NotOwnerError(GuardError):
    error_code = "NOT_OWNER"

    def __init__(self, caller: str):
        self.caller = caller
        super().__init__("Caller is not the owner")


class FundingError(LinkdropError):
    """The value ledger could not move the funds. Retryable once funded."""

    error_code = "FUNDING"


class InsufficientBalance(FundingError):

    def __init__(self, owner: str, available: int, required: int):
        self.owner = owner
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient balance for {owner}: have {available}, need {required}"
        )


class InsufficientAllowance(FundingError):

    def __init__(self, owner: str, spender: str, available: int, required: int):
        self.owner = owner
        self.spender = spender
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient allowance from {owner} to {spender}: "
            f"have {available}, need {required}"
        )


class NotTokenOwner(FundingError):

    def __init__(self, token_id: int, reason: str):
        self.token_id = token_id
        super().__init__(f"Token {token_id}: {reason}")


class InvariantViolation(Exception):
    """Internal invariant violated. Indicates a bug, not bad input."""
    pass


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        """Raise the single error, or ValidationErrors for several."""
        if self.is_valid:
            return
        if len(self.errors) == 1:
            raise self.errors[0]
        raise ValidationErrors(self.errors)

    def unwrap(self) -> Any:
        self.raise_if_invalid()
        return self.sanitized_value

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    HEX_PATTERN = re.compile(r'^(0x)?[0-9a-fA-F]*$')
    ADDRESS_PATTERN = re.compile(r'^(0x|0X)?[0-9a-fA-F]{40}$')

    MAX_UINT256 = (1 << 256) - 1

    @classmethod
    def validate_address(
        cls,
        value: Any,
        field_name: str = "address",
        allow_zero: bool = True,
    ) -> ValidationResult:
        """
        Validate an address and return it in checksum form.

        Accepts 20-byte values, all-lowercase or all-uppercase hex, and
        correctly checksummed mixed-case hex. Mixed case with a bad checksum
        is rejected so typos are not silently accepted.
        """
        if isinstance(value, (bytes, bytearray)):
            if len(value) != 20:
                return ValidationResult.failure([
                    ValidationError(field_name, f"Expected 20 bytes, got {len(value)}", value)
                ])
            checksummed = to_checksum_address(bytes(value))
        elif isinstance(value, str):
            candidate = value.strip()
            if not cls.ADDRESS_PATTERN.match(candidate):
                return ValidationResult.failure([
                    ValidationError(field_name, "Must be a valid address (0x + 40 hex)", value)
                ])
            body = candidate[2:] if candidate[:2] in ("0x", "0X") else candidate
            mixed = body != body.lower() and body != body.upper()
            if mixed and not is_checksum_address(candidate):
                return ValidationResult.failure([
                    ValidationError(field_name, "Invalid address checksum", value)
                ])
            checksummed = to_checksum_address(candidate)
        else:
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected address, got {type(value).__name__}", value)
            ])

        if not allow_zero and checksummed == ZERO_ADDRESS:
            return ValidationResult.failure([
                ValidationError(field_name, "Zero address not allowed", value)
            ])
        return ValidationResult.success(checksummed)

    @classmethod
    def validate_amount(
        cls,
        value: Any,
        field_name: str = "amount",
        max_value: Optional[int] = None,
    ) -> ValidationResult:
        """Validate an unsigned integer amount in ledger base units."""
        # bool is an int subclass; True is not an amount
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer, got {type(value).__name__}", value)
            ])
        if value < 0:
            return ValidationResult.failure([
                ValidationError(field_name, "Cannot be negative", value)
            ])
        limit = cls.MAX_UINT256 if max_value is None else max_value
        if value > limit:
            return ValidationResult.failure([
                ValidationError(field_name, f"Exceeds maximum ({limit})", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_signature_bytes(
        cls,
        value: Any,
        field_name: str = "signature",
    ) -> ValidationResult:
        """Decode a signature given as bytes or (0x-)hex. Length is not checked here."""
        if isinstance(value, (bytes, bytearray)):
            return ValidationResult.success(bytes(value))
        if isinstance(value, str):
            text = value.strip()
            if not cls.HEX_PATTERN.match(text):
                return ValidationResult.failure([
                    ValidationError(field_name, "Invalid hex string", value)
                ])
            body = text[2:] if text[:2] in ("0x", "0X") else text
            if len(body) % 2:
                return ValidationResult.failure([
                    ValidationError(field_name, "Odd-length hex string", value)
                ])
            return ValidationResult.success(bytes.fromhex(body))
        return ValidationResult.failure([
            ValidationError(field_name, f"Expected bytes or hex, got {type(value).__name__}", value)
        ])


def normalize_address(value: Any, field_name: str = "address") -> str:
    """Checksum an address or raise ValidationError."""
    return Validators.validate_address(value, field_name).unwrap()


def is_zero_address(address: str) -> bool:
    return address == ZERO_ADDRESS


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Comparison helpers with security hardening."""

    @staticmethod
    def same_address(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
        """Compare two addresses in canonical form. Malformed input never matches."""
        left = Validators.validate_address(a)
        right = Validators.validate_address(b)
        if not (left.is_valid and right.is_valid):
            return False
        return hmac.compare_digest(
            left.sanitized_value.lower().encode(),
            right.sanitized_value.lower().encode(),
        )

