"""Configuration layer tests."""

import pytest

from linkdrop.config import (
    ConfigError,
    ConfigManager,
    ConfigValidationError,
    ConfigValue,
    get_config,
    get_config_manager,
)

VERIFIER = "0x" + "ab" * 20
TOKEN = "0x" + "cd" * 20


class TestConfigValue:

    def test_default_and_set(self):
        value = ConfigValue(default=3)
        assert value.get() == 3
        value.set(5)
        assert value.get() == 5
        value.reset()
        assert value.get() == 3

    def test_validator_rejects(self):
        value = ConfigValue(default=1, validator=lambda v: v > 0)
        with pytest.raises(ConfigValidationError):
            value.set(0)

    def test_env_coercion(self, monkeypatch):
        monkeypatch.setenv("LINKDROP_TEST_FLAG", "yes")
        value = ConfigValue(default=False, env_var="LINKDROP_TEST_FLAG")
        assert value.get() is True

    def test_env_value_that_is_not_an_integer(self, monkeypatch):
        monkeypatch.setenv("LINKDROP_TEST_AMOUNT", "abc")
        value = ConfigValue(default=1, env_var="LINKDROP_TEST_AMOUNT")
        with pytest.raises(ConfigValidationError, match="LINKDROP_TEST_AMOUNT"):
            value.get()

    def test_env_value_goes_through_validator(self, monkeypatch):
        monkeypatch.setenv("LINKDROP_TEST_AMOUNT", "-5")
        value = ConfigValue(default=1, env_var="LINKDROP_TEST_AMOUNT", validator=lambda v: v >= 0)
        with pytest.raises(ConfigValidationError):
            value.get()

    def test_change_callback(self):
        seen = []
        value = ConfigValue(default=1)
        value.on_change(lambda old, new: seen.append((old, new)))
        value.set(2)
        assert seen == [(None, 2)]


class TestConfigManager:

    def test_singleton(self, clean_config):
        assert get_config_manager() is ConfigManager()
        assert get_config() is ConfigManager().config

    def test_defaults(self, clean_config):
        manager = ConfigManager()
        assert manager.get("campaign.claim_amount") == 10
        assert manager.get("campaign.referral_amount") == 1
        assert manager.get("campaign.claim_amount_native") == 0
        assert manager.get("observability.log_level") == "info"

    def test_env_overrides_everything(self, clean_config, monkeypatch):
        manager = ConfigManager()
        manager.set("campaign.claim_amount", 25)
        monkeypatch.setenv("LINKDROP_CLAIM_AMOUNT", "40")
        assert manager.get("campaign.claim_amount") == 40

    def test_load_yaml_file(self, clean_config, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(
            "campaign:\n"
            "  claim_amount: 50\n"
            "  referral_amount: 5\n"
            f"  verification_address: '{VERIFIER}'\n"
        )
        manager = ConfigManager()
        manager.load_from_file(path)
        assert manager.get("campaign.claim_amount") == 50
        assert manager.get("campaign.verification_address") == VERIFIER
        assert manager.loaded_paths == [path]

    def test_runtime_override_outranks_file(self, clean_config, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("campaign:\n  claim_amount: 50\n")
        manager = ConfigManager()
        manager.set("campaign.claim_amount", 7)
        manager.load_from_file(path)
        assert manager.get("campaign.claim_amount") == 7

    def test_project_file_outranks_user_file(self, clean_config, tmp_path):
        user_dir = tmp_path / "home" / ".linkdrop"
        user_dir.mkdir(parents=True)
        (user_dir / "config.yaml").write_text("campaign:\n  claim_amount: 20\n  referral_amount: 2\n")
        (tmp_path / "linkdrop.yaml").write_text("campaign:\n  claim_amount: 30\n")

        manager = ConfigManager()
        manager.load_defaults()
        assert manager.get("campaign.claim_amount") == 30
        assert manager.get("campaign.referral_amount") == 2
        assert len(manager.loaded_paths) == 2

    def test_missing_file(self, clean_config, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            ConfigManager().load_from_file(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, clean_config, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("campaign: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            ConfigManager().load_from_file(path)

    def test_unknown_key(self, clean_config, tmp_path):
        path = tmp_path / "typo.yaml"
        path.write_text("campaign:\n  claim_amout: 5\n")
        with pytest.raises(ConfigError, match="campaign.claim_amout"):
            ConfigManager().load_from_file(path)

    def test_invalid_path(self, clean_config):
        with pytest.raises(ConfigError):
            ConfigManager().get("campaign.nothing")

    def test_rejects_bad_values(self, clean_config):
        manager = ConfigManager()
        with pytest.raises(ConfigValidationError):
            manager.set("campaign.claim_amount", -1)
        with pytest.raises(ConfigValidationError):
            manager.set("campaign.verification_address", "0x1234")
        with pytest.raises(ConfigValidationError):
            manager.set("observability.log_level", "verbose")

    def test_validate_referral_exceeds_claim(self, clean_config):
        manager = ConfigManager()
        assert manager.validate() == []
        manager.set("campaign.referral_amount", 11)
        errors = manager.validate()
        assert errors == ["campaign.referral_amount: exceeds campaign.claim_amount"]

    def test_validate_reports_bad_env(self, clean_config, monkeypatch):
        monkeypatch.setenv("LINKDROP_CLAIM_AMOUNT", "ten")
        errors = ConfigManager().validate()
        assert any(e.startswith("campaign.claim_amount") for e in errors)

    def test_negative_env_amount_rejected(self, clean_config, monkeypatch):
        monkeypatch.setenv("LINKDROP_CLAIM_AMOUNT", "-5")
        manager = ConfigManager()
        with pytest.raises(ConfigValidationError):
            manager.get("campaign.claim_amount")
        errors = manager.validate()
        assert any(e.startswith("campaign.claim_amount") for e in errors)

    def test_to_campaign_config(self, clean_config, owner):
        manager = ConfigManager()
        manager.set("campaign.verification_address", VERIFIER)
        manager.set("campaign.token_address", TOKEN)
        config = manager.config.campaign.to_campaign_config(owner.address)
        assert config.claim_amount == 10
        assert config.referral_amount == 1
        assert config.issuer_address == owner.address

    def test_to_yaml(self, clean_config):
        text = ConfigManager().config.to_yaml()
        assert "claim_amount: 10" in text
        assert "log_format: json" in text

    def test_export_schema(self, clean_config):
        schema = ConfigManager().export_schema()
        claim = schema["properties"]["campaign"]["claim_amount"]
        assert claim["type"] == "int"
        assert claim["default"] == 10
        assert claim["env_var"] == "LINKDROP_CLAIM_AMOUNT"
