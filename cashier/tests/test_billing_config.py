from __future__ import annotations

from decimal import Decimal

import pytest

from cashier.app.billing.config import load_billing_config


def test_load_billing_config_defaults():
    config = load_billing_config({})

    assert config.tax_percentage == Decimal("0")
    assert config.currency == "USD"
    assert config.invoice_lookback_years == 2
    assert config.default_subscription == "default"
    assert config.vendor_name == "Cashier"
    assert config.users_table == "users"
    assert config.organizations_table == "organizations"
    assert config.subscriptions_table == "subscriptions"


def test_load_billing_config_reads_environment():
    config = load_billing_config(
        {
            "BILLING_TAX_PERCENTAGE": " 7.5 ",
            "BILLING_CURRENCY": "eur",
            "BILLING_INVOICE_LOOKBACK_YEARS": "-3",
            "BILLING_DEFAULT_SUBSCRIPTION": "main",
            "BILLING_VENDOR_NAME": "Acme",
            "BILLING_USERS_TABLE": "accounts",
        }
    )

    assert config.tax_percentage == Decimal("7.5")
    assert config.currency == "EUR"
    assert config.invoice_lookback_years == 0
    assert config.default_subscription == "main"
    assert config.vendor_name == "Acme"
    assert config.users_table == "accounts"


@pytest.mark.parametrize(
    "env",
    [
        {"BILLING_TAX_PERCENTAGE": "ten"},
        {"BILLING_INVOICE_LOOKBACK_YEARS": "two"},
    ],
)
def test_load_billing_config_rejects_invalid_numbers(env):
    with pytest.raises(ValueError):
        load_billing_config(env)
