#!/usr/bin/env python3
"""
Linkdrop CLI

Command-line access to the off-chain side of a campaign: creating and signing
links, verifying signatures and checking claim requests before a relay
submits them.

Usage:
    linkdrop <command> [subcommand] [options]

Commands:
    link        Create links, sign receivers, verify issuer signatures
    claim       Check a claim request
    config      Configuration management

Exit codes:
    0   success
    1   verification or validation failed
    2   usage error

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import yaml
from eth_account import Account
from eth_keys.exceptions import ValidationError as KeyValidationError

from linkdrop import __version__
from linkdrop.authorization import AuthorizationEngine
from linkdrop.config import ConfigError, get_config_manager
from linkdrop.hardening import ZERO_ADDRESS, LinkdropError
from linkdrop.observability import LinkdropLayer, configure_logging, get_logger
from linkdrop.schema import ClaimRequest, load_json, validate_against_schema
from linkdrop.signing import create_link, create_nft_link, sign_receiver_address

logger = get_logger("cli", LinkdropLayer.CLI)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = EXIT_FAILED):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False)
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    else:
        return str(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, "")) for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = [" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))]
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


class LinkdropCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="linkdrop",
            description="Linkdrop one-time claim links",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"linkdrop {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file (default: ./linkdrop.yaml, ~/.linkdrop/config.yaml)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_link_commands()
        self._register_claim_commands()
        self._register_config_commands()

    def _register_link_commands(self) -> None:
        link = self.subparsers.add_parser("link", help="Link creation and signing")
        link_sub = link.add_subparsers(dest="subcommand")

        # link create
        create = link_sub.add_parser("create", help="Generate a link signed by the verification key")
        create.add_argument("--verifier-key", required=True, help="Verification private key (hex)")
        bound = create.add_mutually_exclusive_group()
        bound.add_argument("--referral", help="Referral address bound into the link")
        bound.add_argument("--token-id", type=int, help="Token id (ownership-registry campaigns)")
        bound.add_argument("--any-token", action="store_true",
                           help="Ownership-registry link valid for any token the issuer owns")

        # link sign-receiver
        sign = link_sub.add_parser("sign-receiver", help="Sign a receiver address with a link key")
        sign.add_argument("--link-key", required=True, help="Link private key (hex)")
        sign.add_argument("--receiver", required=True, help="Receiver address")

        # link verify
        verify = link_sub.add_parser("verify", help="Verify an issuer signature over a link")
        verify.add_argument("--verification-address", help="Defaults to campaign.verification_address")
        verify.add_argument("--link-address", required=True, help="Link key address")
        bound = verify.add_mutually_exclusive_group(required=True)
        bound.add_argument("--referral", help="Referral address bound into the link")
        bound.add_argument("--token-id", type=int, help="Token id bound into the link")
        verify.add_argument("--signature", required=True, help="Issuer signature (hex)")

    def _register_claim_commands(self) -> None:
        claim = self.subparsers.add_parser("claim", help="Claim request checks")
        claim_sub = claim.add_subparsers(dest="subcommand")

        # claim check
        check = claim_sub.add_parser("check", help="Validate a claim request and its signatures")
        check.add_argument("--request", "-r", required=True, help="Claim request JSON file")
        check.add_argument("--verification-address", help="Defaults to campaign.verification_address")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        # config show
        config_sub.add_parser("show", help="Show current configuration")

        # config validate
        config_sub.add_parser("validate", help="Validate configuration")

        # config schema
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return EXIT_USAGE

        try:
            self._load_config(parsed)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            if isinstance(result, dict) and result.get("valid") is False:
                return EXIT_FAILED
            return EXIT_OK

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (LinkdropError, ConfigError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return EXIT_FAILED

    def _load_config(self, args: argparse.Namespace) -> None:
        mgr = get_config_manager()
        if args.config:
            mgr.load_from_file(args.config)
        else:
            mgr.load_defaults()
        obs = mgr.config.observability
        configure_logging(obs.log_level.get(), obs.log_format.get(), stream=sys.stderr)

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)
        if subcmd is None:
            raise CLIError(f"Missing subcommand for: {cmd}", exit_code=EXIT_USAGE)

        handler = getattr(self, f"_handle_{cmd}_{subcmd.replace('-', '_')}", None)
        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd}", exit_code=EXIT_USAGE)

        logger.debug("Dispatching command", command=cmd, subcommand=subcmd)
        return handler(args)

    def _verification_address(self, args: argparse.Namespace) -> str:
        address = args.verification_address or get_config_manager().get("campaign.verification_address")
        if not address:
            raise CLIError(
                "No verification address: pass --verification-address or set "
                "campaign.verification_address",
                exit_code=EXIT_USAGE,
            )
        return address

    # Link handlers
    @staticmethod
    def _key_address(private_key: str, label: str) -> str:
        try:
            return Account.from_key(private_key).address
        except (ValueError, TypeError, KeyValidationError) as e:
            raise CLIError(f"Invalid {label}: {e}") from e

    def _handle_link_create(self, args: argparse.Namespace) -> Any:
        self._key_address(args.verifier_key, "verifier key")
        if args.token_id is not None:
            link = create_nft_link(args.verifier_key, args.token_id)
        elif args.any_token:
            link = create_nft_link(args.verifier_key)
        elif args.referral:
            link = create_link(args.verifier_key, args.referral)
        else:
            link = create_link(args.verifier_key)
        return link.to_dict()

    def _handle_link_sign_receiver(self, args: argparse.Namespace) -> Any:
        link_address = self._key_address(args.link_key, "link key")
        return {
            "link_key_address": link_address,
            "receiver_address": args.receiver,
            "receiver_signature": sign_receiver_address(args.link_key, args.receiver),
        }

    def _handle_link_verify(self, args: argparse.Namespace) -> Any:
        engine = AuthorizationEngine(self._verification_address(args))
        if args.token_id is not None:
            valid = engine.verify_link_key_token(args.link_address, args.token_id, args.signature)
        else:
            valid = engine.verify_link_key(args.link_address, args.referral, args.signature)
        return {
            "valid": valid,
            "link_key_address": args.link_address,
            "verification_address": engine.verification_address,
        }

    # Claim handlers
    def _handle_claim_check(self, args: argparse.Namespace) -> Any:
        try:
            data = load_json(Path(args.request))
        except (OSError, json.JSONDecodeError) as e:
            raise CLIError(f"Cannot read claim request {args.request}: {e}") from e

        errors = validate_against_schema(data)
        if errors:
            return {"valid": False, "errors": errors}

        request = ClaimRequest.from_dict(data)
        engine = AuthorizationEngine(self._verification_address(args))
        if request.token_id is not None:
            issuer_ok = engine.verify_link_key_token(
                request.link_key_address, request.token_id, request.issuer_signature
            )
        else:
            issuer_ok = engine.verify_link_key(
                request.link_key_address,
                request.referral_address or ZERO_ADDRESS,
                request.issuer_signature,
            )
        receiver_ok = engine.verify_receiver_address(
            request.link_key_address, request.receiver_address, request.receiver_signature
        )

        errors = []
        if not issuer_ok:
            errors.append("Link key is not signed by linkdrop verification key")
        if not receiver_ok:
            errors.append("Receiver address is not signed by link key")
        return {
            "valid": issuer_ok and receiver_ok,
            "link_key_address": request.link_key_address,
            "receiver_address": request.receiver_address,
            "errors": errors,
        }

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return get_config_manager().export_schema()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = LinkdropCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
