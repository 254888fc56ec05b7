"""
Linkdrop: one-time claim links

An issuer funds a pool of value and has a verification key vouch for
ephemeral link keys. Whoever holds a link signs the receiver's address with
the link key, and any relay can then submit both signatures to redeem the
link once, on the receiver's behalf.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                            LINKDROP CAMPAIGN                             │
    │                                                                          │
    │  ORCHESTRATION                                                           │
    │    campaign.py       Fungible and ownership-registry campaigns          │
    │    guard.py          Owner-only operations and the pause switch          │
    │                                                                          │
    │  AUTHORIZATION AND REPLAY                                                │
    │    authorization.py  Issuer and link-holder trust chains                 │
    │    verifier.py       Message encoding and signature recovery             │
    │    ledger.py         Claimed flags, the only replay protection           │
    │                                                                          │
    │  COLLABORATORS                                                           │
    │    token.py          Value-ledger protocols and in-memory ledgers        │
    │    events.py         Outcome records, event bus, compensating saga       │
    │                                                                          │
    │  TOOLING                                                                 │
    │    signing.py        Link creation and signing                           │
    │    schema.py         Claim-request JSON Schema                           │
    │    config.py         YAML + environment configuration                    │
    │    cli.py            ``linkdrop`` command line                           │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Fail Closed: a signature that cannot be parsed or recovered does not
    verify. Mixed-case addresses with a bad checksum are rejected.

    All or Nothing: a claim either moves every transfer and sets the claimed
    flag, or leaves no trace. Transfers already made are reversed when a
    later one fails, and the flag is released.

    One Serialized Slot: each campaign processes one claim at a time, so no
    two callers can both pass the claimed check for the same link key.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.2.0"


# Lazy imports keep ``import linkdrop`` free of the Ethereum stack
def __getattr__(name):
    """Lazy import Linkdrop modules on first access."""

    if name in ("CampaignConfig", "LinkdropCampaign", "LinkdropERC20", "LinkdropERC721"):
        from linkdrop import campaign
        return getattr(campaign, name)

    if name in ("AuthorizationEngine",):
        from linkdrop import authorization
        return getattr(authorization, name)

    if name in ("ClaimLedger",):
        from linkdrop import ledger
        return getattr(ledger, name)

    if name in ("AccessGuard", "AccessState"):
        from linkdrop import guard
        return getattr(guard, name)

    if name in ("FungibleLedger", "OwnershipRegistry", "NativeCurrency", "TransferReceipt",
                "InMemoryERC20", "InMemoryERC721", "NativeLedger"):
        from linkdrop import token
        return getattr(token, name)

    if name in ("Event", "Withdrawn", "Transfer", "Approval", "Paused", "Unpaused",
                "OwnershipTransferred", "EventBus", "EventLog", "EventSink", "Saga"):
        from linkdrop import events
        return getattr(events, name)

    if name in ("Link", "create_link", "create_nft_link", "sign_link_key_address",
                "sign_link_key", "sign_link_key_token", "sign_receiver_address"):
        from linkdrop import signing
        return getattr(signing, name)

    if name in ("verify", "verify_signature", "recover_signer", "link_key_message",
                "link_key_address_message", "link_key_token_message", "receiver_message"):
        from linkdrop import verifier
        return getattr(verifier, name)

    if name in ("ClaimRequest",):
        from linkdrop import schema
        return getattr(schema, name)

    if name in ("LinkdropError", "ValidationError", "AuthorizationError", "LinkKeyNotSigned",
                "ReceiverNotSigned", "AlreadyClaimedError", "GuardError", "PausedError",
                "NotPausedError", "NotOwnerError", "FundingError", "InsufficientBalance",
                "InsufficientAllowance", "NotTokenOwner", "ZERO_ADDRESS"):
        from linkdrop import hardening
        return getattr(hardening, name)

    raise AttributeError(f"module 'linkdrop' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Campaigns
    "CampaignConfig",
    "LinkdropERC20",
    "LinkdropERC721",
    # Components
    "AuthorizationEngine",
    "ClaimLedger",
    "AccessGuard",
    "AccessState",
    # Ledgers
    "InMemoryERC20",
    "InMemoryERC721",
    "NativeLedger",
    # Tooling
    "Link",
    "create_link",
    "create_nft_link",
    "ClaimRequest",
    # Errors
    "LinkdropError",
    "AlreadyClaimedError",
    "PausedError",
    "NotOwnerError",
    "FundingError",
]
