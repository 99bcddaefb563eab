from __future__ import annotations

from cashier.app.billing.options import merge_caller_wins, merge_defaults_win


def test_merge_caller_wins_replaces_top_level_values():
    defaults = {"amount": 10, "options": {"submit_for_settlement": True}, "recurring": True}

    merged = merge_caller_wins(defaults, {"options": {"store_in_vault": True}})

    assert merged == {"amount": 10, "options": {"store_in_vault": True}, "recurring": True}
    assert defaults["options"] == {"submit_for_settlement": True}


def test_merge_caller_wins_without_options_copies_defaults():
    defaults = {"amount": 10}

    merged = merge_caller_wins(defaults)

    assert merged == defaults
    assert merged is not defaults


def test_merge_defaults_win_at_every_level():
    options = {
        "first_name": "Caller",
        "company": "Acme",
        "credit_card": {"options": {"verify_card": False, "make_default": True}, "cvv": "123"},
    }
    defaults = {"first_name": "Entity", "credit_card": {"options": {"verify_card": True}}}

    merged = merge_defaults_win(options, defaults)

    assert merged == {
        "first_name": "Entity",
        "company": "Acme",
        "credit_card": {"options": {"verify_card": True, "make_default": True}, "cvv": "123"},
    }
    assert options["credit_card"]["options"]["verify_card"] is False


def test_merge_defaults_win_replaces_scalar_with_mapping():
    merged = merge_defaults_win({"credit_card": "legacy"}, {"credit_card": {"options": {"verify_card": True}}})

    assert merged == {"credit_card": {"options": {"verify_card": True}}}


def test_merge_defaults_win_keeps_none_defaults():
    merged = merge_defaults_win({"last_name": "Caller"}, {"last_name": None})

    assert merged == {"last_name": None}
