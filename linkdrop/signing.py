"""Off-chain link tooling.

Helpers the issuer's campaign tooling and the link holder use to produce the
signatures that ``linkdrop.verifier`` checks. A link is an ephemeral key pair;
its address is the link ID and the verification key vouches for it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from linkdrop.hardening import ZERO_ADDRESS, normalize_address
from linkdrop.verifier import (
    link_key_address_message,
    link_key_message,
    link_key_token_message,
    receiver_message,
)


def _hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def sign_message_hash(private_key: Any, message_hash: bytes) -> str:
    """Sign a 32-byte hash as a personal message; returns 0x-hex r||s||v."""
    signed = Account.sign_message(encode_defunct(primitive=message_hash), private_key=private_key)
    return _hex(signed.signature)


def sign_link_key_address(verifier_key: Any, link_key_address: str, referral_address: str) -> str:
    return sign_message_hash(verifier_key, link_key_message(link_key_address, referral_address))


def sign_link_key(verifier_key: Any, link_key_address: str) -> str:
    return sign_message_hash(verifier_key, link_key_address_message(link_key_address))


def sign_link_key_token(verifier_key: Any, link_key_address: str, token_id: int) -> str:
    return sign_message_hash(verifier_key, link_key_token_message(link_key_address, token_id))


def sign_receiver_address(link_key: Any, receiver_address: str) -> str:
    return sign_message_hash(link_key, receiver_message(receiver_address))


@dataclass(frozen=True)
class Link:
    """A distributable claim link."""
    key: str  # ephemeral private key, 0x-hex
    address: str  # link ID
    verification_signature: str
    referral_address: str = ZERO_ADDRESS
    token_id: Optional[int] = None
    nft: bool = False

    def sign_receiver(self, receiver_address: str) -> str:
        return sign_receiver_address(self.key, receiver_address)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "key": self.key,
            "address": self.address,
            "verification_signature": self.verification_signature,
        }
        if self.nft:
            data["token_id"] = self.token_id
        else:
            data["referral_address"] = self.referral_address
        return data


def create_link(verifier_key: Any, referral_address: str = ZERO_ADDRESS) -> Link:
    """Generate a fresh link key and have the verification key sign it (ERC20)."""
    referral = normalize_address(referral_address, "referral_address")
    wallet = Account.create()
    return Link(
        key=_hex(wallet.key),
        address=wallet.address,
        verification_signature=sign_link_key_address(verifier_key, wallet.address, referral),
        referral_address=referral,
    )


def create_nft_link(verifier_key: Any, token_id: Optional[int] = None) -> Link:
    """
    Generate a fresh link key for an ERC721 campaign.

    With ``token_id`` the signature binds that one token; without it the link
    may redeem any token the issuer owns.
    """
    wallet = Account.create()
    if token_id is None:
        signature = sign_link_key(verifier_key, wallet.address)
    else:
        signature = sign_link_key_token(verifier_key, wallet.address, token_id)
    return Link(
        key=_hex(wallet.key),
        address=wallet.address,
        verification_signature=signature,
        token_id=token_id,
        nft=True,
    )
