"""
Linkdrop Authorization Engine

Two independent trust chains, composed by the transfer path:

    (a) the verification key vouches for a specific link key, together with
        the referral (fungible campaigns) or token id (NFT campaigns) it
        bound at signing time;
    (b) whoever holds the link key's private material vouches for exactly
        one receiver.

All predicates are pure functions of caller-supplied data and the engine's
verification address.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any

from linkdrop.hardening import LinkKeyNotSigned, ReceiverNotSigned, Validators
from linkdrop.observability import LinkdropLayer, get_logger
from linkdrop.verifier import (
    SignatureLike,
    link_key_address_message,
    link_key_message,
    link_key_token_message,
    receiver_message,
    verify_signature,
)

logger = get_logger("authorization", LinkdropLayer.AUTHORIZATION)


class AuthorizationEngine:
    """Signature predicates bound to one verification address."""

    def __init__(self, verification_address: Any):
        self.verification_address = Validators.validate_address(
            verification_address, "verification_address", allow_zero=False
        ).unwrap()

    def verify_link_key(
        self,
        link_key_address: Any,
        referral_address: Any,
        signature: SignatureLike,
    ) -> bool:
        message = link_key_message(link_key_address, referral_address)
        return verify_signature(message, signature, self.verification_address)

    def verify_link_key_address(self, link_key_address: Any, signature: SignatureLike) -> bool:
        message = link_key_address_message(link_key_address)
        return verify_signature(message, signature, self.verification_address)

    def verify_link_key_token(
        self,
        link_key_address: Any,
        token_id: int,
        signature: SignatureLike,
    ) -> bool:
        """
        True if the issuer signed this link for ``token_id`` or for any token.
        """
        message = link_key_token_message(link_key_address, token_id)
        if verify_signature(message, signature, self.verification_address):
            return True
        return self.verify_link_key_address(link_key_address, signature)

    @staticmethod
    def verify_receiver_address(
        link_key_address: Any,
        receiver_address: Any,
        signature: SignatureLike,
    ) -> bool:
        return verify_signature(receiver_message(receiver_address), signature, link_key_address)

    # Raising forms used by the transfer path

    def require_link_key(self, link_key_address: Any, referral_address: Any, signature: SignatureLike) -> None:
        if not self.verify_link_key(link_key_address, referral_address, signature):
            logger.warning("Issuer signature rejected", error_code="AUTH_LINK_KEY",
                           link_key=str(link_key_address))
            raise LinkKeyNotSigned()

    def require_link_key_token(self, link_key_address: Any, token_id: int, signature: SignatureLike) -> None:
        if not self.verify_link_key_token(link_key_address, token_id, signature):
            logger.warning("Issuer signature rejected", error_code="AUTH_LINK_KEY",
                           link_key=str(link_key_address), token_id=token_id)
            raise LinkKeyNotSigned()

    def require_receiver(self, link_key_address: Any, receiver_address: Any, signature: SignatureLike) -> None:
        if not self.verify_receiver_address(link_key_address, receiver_address, signature):
            logger.warning("Receiver signature rejected", error_code="AUTH_RECEIVER",
                           link_key=str(link_key_address), receiver=str(receiver_address))
            raise ReceiverNotSigned()
