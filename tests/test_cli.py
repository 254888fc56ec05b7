"""Command-line interface tests."""

import json

import pytest
import yaml

from linkdrop import __version__
from linkdrop.cli import EXIT_FAILED, EXIT_OK, EXIT_USAGE, OutputFormat, format_output, main
from linkdrop.signing import create_link, create_nft_link

VERIFIER_KEY = "0x" + "22" * 32


def _run_json(capsys, argv):
    code = main(argv)
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else None


@pytest.fixture
def claim_file(tmp_path, verifier, receiver):
    link = create_link(verifier.key)
    data = {
        "receiver_address": receiver.address,
        "link_key_address": link.address,
        "issuer_signature": link.verification_signature,
        "receiver_signature": link.sign_receiver(receiver.address),
    }
    path = tmp_path / "claim.json"
    path.write_text(json.dumps(data))
    return path, data


class TestFormatOutput:

    def test_json(self):
        assert json.loads(format_output({"a": 1})) == {"a": 1}

    def test_yaml(self):
        assert yaml.safe_load(format_output({"a": 1}, OutputFormat.YAML)) == {"a": 1}

    def test_table_of_rows(self):
        table = format_output([{"id": "1", "name": "x"}], OutputFormat.TABLE)
        lines = table.splitlines()
        assert lines[0].startswith("id")
        assert len(lines) == 3


class TestUsage:

    def test_no_command(self, clean_config, capsys):
        assert main([]) == EXIT_USAGE

    def test_missing_subcommand(self, clean_config, capsys):
        assert main(["link"]) == EXIT_USAGE
        assert "Missing subcommand" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])
        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_quiet_suppresses_errors(self, clean_config, capsys):
        assert main(["--quiet", "link"]) == EXIT_USAGE
        assert capsys.readouterr().err == ""


class TestLinkCommands:

    def test_create(self, clean_config, capsys, referral):
        code, data = _run_json(capsys, ["link", "create", "--verifier-key", VERIFIER_KEY,
                                        "--referral", referral.address])
        assert code == EXIT_OK
        assert data["referral_address"] == referral.address
        assert set(data) == {"key", "address", "verification_signature", "referral_address"}

    def test_create_nft_link(self, clean_config, capsys):
        code, data = _run_json(capsys, ["link", "create", "--verifier-key", VERIFIER_KEY, "--token-id", "7"])
        assert code == EXIT_OK
        assert data["token_id"] == 7

    def test_create_any_token_link(self, clean_config, capsys):
        code, data = _run_json(capsys, ["link", "create", "--verifier-key", VERIFIER_KEY, "--any-token"])
        assert code == EXIT_OK
        assert data["token_id"] is None
        assert "referral_address" not in data

    def test_create_with_bad_key(self, clean_config, capsys):
        assert main(["link", "create", "--verifier-key", "0x1234"]) == EXIT_FAILED
        assert "Invalid verifier key" in capsys.readouterr().err

    def test_sign_receiver(self, clean_config, capsys, verifier, receiver):
        link = create_link(verifier.key)
        code, data = _run_json(capsys, ["link", "sign-receiver", "--link-key", link.key,
                                        "--receiver", receiver.address])
        assert code == EXIT_OK
        assert data["link_key_address"] == link.address
        assert data["receiver_signature"] == link.sign_receiver(receiver.address)

    def test_verify_valid(self, clean_config, capsys, verifier):
        link = create_link(verifier.key)
        code, data = _run_json(capsys, [
            "link", "verify",
            "--verification-address", verifier.address,
            "--link-address", link.address,
            "--referral", link.referral_address,
            "--signature", link.verification_signature,
        ])
        assert code == EXIT_OK
        assert data["valid"] is True

    def test_verify_token_link_against_wrong_token(self, clean_config, capsys, verifier):
        link = create_nft_link(verifier.key, 3)
        code, data = _run_json(capsys, [
            "link", "verify",
            "--verification-address", verifier.address,
            "--link-address", link.address,
            "--token-id", "4",
            "--signature", link.verification_signature,
        ])
        assert code == EXIT_FAILED
        assert data["valid"] is False

    def test_verify_uses_configured_address(self, clean_config, capsys, monkeypatch, verifier):
        monkeypatch.setenv("LINKDROP_VERIFICATION_ADDRESS", verifier.address)
        link = create_link(verifier.key)
        code, data = _run_json(capsys, [
            "link", "verify",
            "--link-address", link.address,
            "--referral", link.referral_address,
            "--signature", link.verification_signature,
        ])
        assert code == EXIT_OK
        assert data["verification_address"] == verifier.address

    def test_verify_without_address(self, clean_config, capsys, verifier):
        link = create_link(verifier.key)
        code = main([
            "link", "verify",
            "--link-address", link.address,
            "--referral", link.referral_address,
            "--signature", link.verification_signature,
        ])
        assert code == EXIT_USAGE
        assert "No verification address" in capsys.readouterr().err


class TestClaimCheck:

    def test_valid_request(self, clean_config, capsys, claim_file, verifier):
        path, data = claim_file
        code, result = _run_json(capsys, ["claim", "check", "-r", str(path),
                                          "--verification-address", verifier.address])
        assert code == EXIT_OK
        assert result["valid"] is True
        assert result["link_key_address"] == data["link_key_address"]

    def test_wrong_verifier(self, clean_config, capsys, claim_file, stranger):
        path, _ = claim_file
        code, result = _run_json(capsys, ["claim", "check", "-r", str(path),
                                          "--verification-address", stranger.address])
        assert code == EXIT_FAILED
        assert result["errors"] == ["Link key is not signed by linkdrop verification key"]

    def test_redirected_receiver(self, clean_config, capsys, claim_file, verifier, stranger):
        path, data = claim_file
        data["receiver_address"] = stranger.address
        path.write_text(json.dumps(data))
        code, result = _run_json(capsys, ["claim", "check", "-r", str(path),
                                          "--verification-address", verifier.address])
        assert code == EXIT_FAILED
        assert result["errors"] == ["Receiver address is not signed by link key"]

    def test_schema_violation(self, clean_config, capsys, claim_file, verifier):
        path, data = claim_file
        del data["issuer_signature"]
        path.write_text(json.dumps(data))
        code, result = _run_json(capsys, ["claim", "check", "-r", str(path),
                                          "--verification-address", verifier.address])
        assert code == EXIT_FAILED
        assert result["valid"] is False
        assert any("issuer_signature" in e for e in result["errors"])

    def test_unreadable_file(self, clean_config, capsys, tmp_path, verifier):
        code = main(["claim", "check", "-r", str(tmp_path / "missing.json"),
                     "--verification-address", verifier.address])
        assert code == EXIT_FAILED
        assert "Cannot read claim request" in capsys.readouterr().err


class TestConfigCommands:

    def test_show(self, clean_config, capsys):
        code, data = _run_json(capsys, ["config", "show"])
        assert code == EXIT_OK
        assert data["campaign"]["claim_amount"] == 10

    def test_show_yaml(self, clean_config, capsys):
        assert main(["--format", "yaml", "config", "show"]) == EXIT_OK
        data = yaml.safe_load(capsys.readouterr().out)
        assert data["observability"]["log_format"] == "json"

    def test_explicit_config_file(self, clean_config, capsys, tmp_path):
        path = tmp_path / "campaign.yaml"
        path.write_text("campaign:\n  claim_amount: 99\n")
        code, data = _run_json(capsys, ["--config", str(path), "config", "show"])
        assert code == EXIT_OK
        assert data["campaign"]["claim_amount"] == 99

    def test_missing_config_file(self, clean_config, capsys, tmp_path):
        assert main(["--config", str(tmp_path / "absent.yaml"), "config", "show"]) == EXIT_FAILED

    def test_show_with_malformed_env_value(self, clean_config, capsys, monkeypatch):
        monkeypatch.setenv("LINKDROP_CLAIM_AMOUNT", "abc")
        assert main(["config", "show"]) == EXIT_FAILED
        assert "LINKDROP_CLAIM_AMOUNT" in capsys.readouterr().err

    def test_validate(self, clean_config, capsys):
        code, data = _run_json(capsys, ["config", "validate"])
        assert code == EXIT_OK
        assert data == {"valid": True, "errors": []}

    def test_validate_failure(self, clean_config, capsys, tmp_path):
        (tmp_path / "linkdrop.yaml").write_text("campaign:\n  claim_amount: 1\n  referral_amount: 5\n")
        code, data = _run_json(capsys, ["config", "validate"])
        assert code == EXIT_FAILED
        assert data["valid"] is False

    def test_schema(self, clean_config, capsys):
        code, data = _run_json(capsys, ["config", "schema"])
        assert code == EXIT_OK
        assert data["properties"]["campaign"]["verification_address"]["env_var"] == "LINKDROP_VERIFICATION_ADDRESS"
