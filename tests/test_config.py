"""Tests for settings and paywall config parsing."""

import pytest

from lightning_paywall.config import PaywallConfig, PaywallSettings


class TestPaywallSettings:
    def test_defaults(self):
        settings = PaywallSettings(secret="s")
        assert settings.token_lifetime == 600
        assert settings.invoice_expiry == 1800
        assert settings.gateway_timeout == 10.0
        assert settings.strict_amount is False

    def test_requires_secret(self):
        with pytest.raises(ValueError, match="secret is required"):
            PaywallSettings(secret="")

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError, match="gateway_timeout"):
            PaywallSettings(secret="s", gateway_timeout=0)

    def test_is_immutable(self):
        settings = PaywallSettings(secret="s")
        with pytest.raises(Exception):
            settings.secret = "other"

    def test_from_env(self):
        settings = PaywallSettings.from_env(environ={
            "PAYWALL_SECRET": "env-secret",
            "PAYWALL_TOKEN_LIFETIME": "120",
            "PAYWALL_GATEWAY_TIMEOUT": "2.5",
            "PAYWALL_STRICT_AMOUNT": "true",
            "PAYWALL_MEMO_PREFIX": "My Blog",
        })
        assert settings.secret == "env-secret"
        assert settings.token_lifetime == 120
        assert settings.invoice_expiry == 1800
        assert settings.gateway_timeout == 2.5
        assert settings.strict_amount is True
        assert settings.memo_prefix == "My Blog"

    def test_from_env_without_secret(self):
        with pytest.raises(ValueError, match="secret is required"):
            PaywallSettings.from_env(environ={})


class TestPaywallConfig:
    def test_from_dict_blank_values_unset(self):
        config = PaywallConfig.from_dict({
            "amount": "100",
            "button_text": "",
            "timeout": "",
            "timein": None,
            "total": "5000",
        })
        assert config == PaywallConfig(amount=100, total=5000)

    def test_from_dict_fractional_hours(self):
        assert PaywallConfig.from_dict({"amount": 1, "timeout": "1.5"}).timeout == 1.5

    def test_from_dict_rejects_garbage(self):
        with pytest.raises(ValueError, match="amount"):
            PaywallConfig.from_dict({"amount": "lots"})

    def test_with_defaults_fills_blanks_only(self):
        defaults = PaywallConfig(amount=100, button_text="Pay", total=10000)
        config = PaywallConfig(amount=500).with_defaults(defaults)
        assert config.amount == 500
        assert config.button_text == "Pay"
        assert config.total == 10000
        assert config.timeout is None

    def test_with_no_defaults(self):
        config = PaywallConfig(amount=5)
        assert config.with_defaults(None) is config

    def test_fractional_amount_rejected(self):
        with pytest.raises(ValueError, match="whole number"):
            PaywallConfig(amount=10.5)

    def test_fractional_amount_rejected_from_dict(self):
        with pytest.raises(ValueError, match="whole number"):
            PaywallConfig.from_dict({"amount": "10.5"})

    def test_fractional_total_rejected(self):
        with pytest.raises(ValueError, match="total"):
            PaywallConfig(amount=10, total=99.9)

    def test_whole_float_amount_becomes_int(self):
        config = PaywallConfig(amount=1000.0)
        assert config.amount == 1000
        assert isinstance(config.amount, int)

    def test_non_numeric_amount_rejected(self):
        with pytest.raises(ValueError, match="amount"):
            PaywallConfig(amount="100")
