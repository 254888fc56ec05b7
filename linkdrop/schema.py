"""JSON Schema validation of claim requests.

Relays hand claims over as JSON documents. This module provides:
- A registry of the packaged schemas so ``$ref`` resolves across them
- Cached validators
- ``ClaimRequest``, the validated form a campaign redeems

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from linkdrop.hardening import ValidationError, ValidationErrors, normalize_address

SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"
CLAIM_REQUEST_SCHEMA = "claim-request.schema.json"


def load_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=1)
def _schema_registry(schemas_dir: Path = SCHEMA_DIR) -> Registry:
    """Registry of every packaged schema, keyed by its ``$id``."""
    resources = []
    for schema_path in sorted(schemas_dir.glob("*.schema.json")):
        schema = load_json(schema_path)
        schema_id = schema.get("$id") or f"https://schemas.linkdrop.dev/{schema_path.name}"
        resources.append((schema_id, Resource.from_contents(schema, default_specification=DRAFT202012)))
    return Registry().with_resources(resources)


@lru_cache(maxsize=None)
def schema_validator(schema_name: str = CLAIM_REQUEST_SCHEMA) -> Draft202012Validator:
    schema = load_json(SCHEMA_DIR / schema_name)
    return Draft202012Validator(schema, registry=_schema_registry())


def validate_against_schema(obj: Any, schema_name: str = CLAIM_REQUEST_SCHEMA) -> List[str]:
    """Validate an object against a packaged schema.

    Returns:
        List of validation error messages (empty if valid)
    """
    validator = schema_validator(schema_name)
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(validator.iter_errors(obj), key=lambda e: e.json_path)
    ]


@dataclass(frozen=True)
class ClaimRequest:
    """A relay's claim, validated and with addresses in checksum form."""
    receiver_address: str
    link_key_address: str
    issuer_signature: str
    receiver_signature: str
    referral_address: Optional[str] = None
    token_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Any) -> "ClaimRequest":
        """Schema-validate ``data`` and build a request.

        Raises:
            ValidationError: listing every schema violation by JSON path
        """
        messages = validate_against_schema(data)
        if messages:
            raise ValidationErrors([
                ValidationError("claim_request", message) for message in messages
            ])
        referral = data.get("referral_address")
        return cls(
            receiver_address=normalize_address(data["receiver_address"], "receiver_address"),
            link_key_address=normalize_address(data["link_key_address"], "link_key_address"),
            issuer_signature=data["issuer_signature"],
            receiver_signature=data["receiver_signature"],
            referral_address=normalize_address(referral, "referral_address") if referral else None,
            token_id=data.get("token_id"),
        )

    @classmethod
    def from_file(cls, path: Path) -> "ClaimRequest":
        return cls.from_dict(load_json(Path(path)))

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "receiver_address": self.receiver_address,
            "link_key_address": self.link_key_address,
            "issuer_signature": self.issuer_signature,
            "receiver_signature": self.receiver_signature,
        }
        if self.referral_address is not None:
            data["referral_address"] = self.referral_address
        if self.token_id is not None:
            data["token_id"] = self.token_id
        return data
