"""
Linkdrop Signature Verifier

Pure functions that check a signature over a fixed-layout message against an
expected signer address. No state.

Wire contract (must stay bit-exact with the issuer's signing tooling):

    message_hash = keccak256(abi.encodePacked(fields...))
        issuer, ERC20:   (address linkKey, address referral)
        issuer, ERC721:  (address linkKey)                    any token
                         (address linkKey, uint256 tokenId)    one token
        link holder:     (address receiver)

    digest = keccak256("\\x19Ethereum Signed Message:\\n32" || message_hash)

    signature = r[32] || s[32] || v[1],  v in {0, 1, 27, 28},  s <= n/2

A signature that cannot be parsed or recovered simply does not verify;
recovery failure is not a distinct error class at this layer.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple, Union

from eth_abi.packed import encode_packed
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError
from eth_utils import keccak

from linkdrop.hardening import (
    SECP256K1_HALF_N,
    SECP256K1_N,
    SIGNATURE_LENGTH,
    CryptoUtils,
    Validators,
    normalize_address,
)
from linkdrop.observability import LinkdropLayer, get_logger

logger = get_logger("verifier", LinkdropLayer.VERIFIER)

SignatureLike = Union[bytes, bytearray, str]


# =============================================================================
# MESSAGE ENCODING
# =============================================================================

def solidity_keccak(abi_types: Sequence[str], values: Sequence[Any]) -> bytes:
    """keccak256 of the tightly packed encoding, as Solidity's abi.encodePacked."""
    return keccak(encode_packed(list(abi_types), list(values)))


def link_key_message(link_key_address: Any, referral_address: Any) -> bytes:
    """Message hash the verification key signs for an ERC20 link."""
    return solidity_keccak(
        ["address", "address"],
        [
            normalize_address(link_key_address, "link_key_address"),
            normalize_address(referral_address, "referral_address"),
        ],
    )


def link_key_address_message(link_key_address: Any) -> bytes:
    """Message hash the verification key signs for an ERC721 link valid for any token."""
    return solidity_keccak(
        ["address"],
        [normalize_address(link_key_address, "link_key_address")],
    )


def link_key_token_message(link_key_address: Any, token_id: int) -> bytes:
    """Message hash the verification key signs for an ERC721 link bound to one token."""
    token_id = Validators.validate_amount(token_id, "token_id").unwrap()
    return solidity_keccak(
        ["address", "uint256"],
        [normalize_address(link_key_address, "link_key_address"), token_id],
    )


def receiver_message(receiver_address: Any) -> bytes:
    """Message hash the link key signs to name its receiver."""
    return solidity_keccak(
        ["address"],
        [normalize_address(receiver_address, "receiver_address")],
    )


# =============================================================================
# SIGNATURE PARSING AND RECOVERY
# =============================================================================

@dataclass(frozen=True)
class ParsedSignature:
    """A recoverable secp256k1 signature in canonical (low-s) form."""
    v: int
    r: int
    s: int

    @property
    def vrs(self) -> Tuple[int, int, int]:
        return (self.v, self.r, self.s)


def parse_signature(signature: SignatureLike) -> Optional[ParsedSignature]:
    """
    Split a 65-byte signature into (v, r, s).

    Returns None for anything that is not a canonical recoverable signature:
    wrong length, unknown recovery id, r/s out of range, or high-s (the
    malleable twin of a valid signature).
    """
    decoded = Validators.validate_signature_bytes(signature)
    if not decoded.is_valid:
        return None
    raw = decoded.sanitized_value
    if len(raw) != SIGNATURE_LENGTH:
        return None

    r = int.from_bytes(raw[0:32], "big")
    s = int.from_bytes(raw[32:64], "big")
    v = raw[64]

    if v in (0, 1):
        v += 27
    if v not in (27, 28):
        return None
    if not (1 <= r < SECP256K1_N):
        return None
    if not (1 <= s <= SECP256K1_HALF_N):
        return None
    return ParsedSignature(v=v, r=r, s=s)


def recover_signer(message_hash: bytes, signature: SignatureLike) -> Optional[str]:
    """Recover the checksum address that signed ``message_hash`` as a personal message."""
    parsed = parse_signature(signature)
    if parsed is None:
        return None
    try:
        return Account.recover_message(
            encode_defunct(primitive=bytes(message_hash)),
            vrs=parsed.vrs,
        )
    except (BadSignature, KeyValidationError, ValueError, TypeError) as exc:
        logger.debug("Signature recovery failed", error=str(exc))
        return None


def verify_signature(
    message_hash: bytes,
    signature: SignatureLike,
    expected_signer: Any,
) -> bool:
    """True iff ``signature`` over ``message_hash`` recovers to ``expected_signer``."""
    recovered = recover_signer(message_hash, signature)
    if recovered is None:
        return False
    return CryptoUtils.same_address(recovered, expected_signer)


def verify(
    abi_types: Sequence[str],
    values: Sequence[Any],
    signature: SignatureLike,
    expected_signer: Any,
) -> bool:
    """Verify(message_fields, signature, expected_signer) over packed fields."""
    return verify_signature(solidity_keccak(abi_types, values), signature, expected_signer)
