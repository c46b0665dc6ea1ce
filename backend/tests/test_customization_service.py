"""
Customization validation, pricing and signature tests.
"""

from decimal import Decimal

import pytest

from app.services.customization_service import (
    build_signature,
    coerce_selections,
    compute_customizations,
    qty_signature,
)
from app.services.errors import RuleViolation


def test_qty_signature_strips_trailing_zeros():
    assert qty_signature(Decimal("1")) == "1"
    assert qty_signature(Decimal("1.500")) == "1.5"
    assert qty_signature(Decimal("2.125")) == "2.125"


def test_signature_is_order_independent():
    a = build_signature({5: Decimal("1"), 2: Decimal("2")})
    b = build_signature({2: Decimal("2"), 5: Decimal("1")})
    assert a == b == "2:2|5:1"
    assert build_signature({}) is None


def test_coerce_rejects_malformed_entries():
    with pytest.raises(RuleViolation) as exc:
        coerce_selections([{"qty": 1}])
    assert exc.value.code == "CUSTOMIZATION_INVALID"

    with pytest.raises(RuleViolation):
        coerce_selections(["not-a-dict"])


def test_item_without_groups_has_no_delta(db_session, menu):
    result = compute_customizations(menu["soda"], [])
    assert result.price_delta == 0
    assert result.signature is None
    assert result.rows == []


def test_required_group_must_be_selected(db_session, burger_options, menu):
    with pytest.raises(RuleViolation) as exc:
        compute_customizations(menu["burger"], [{"option_id": burger_options["cheese"], "qty": 1}])
    assert exc.value.code == "CUSTOMIZATION_REQUIRED"


def test_max_select_is_enforced(db_session, burger_options, menu):
    with pytest.raises(RuleViolation) as exc:
        compute_customizations(menu["burger"], [
            {"option_id": burger_options["rare"]},
            {"option_id": burger_options["well"]},
        ])
    assert exc.value.code == "CUSTOMIZATION_INVALID"


def test_quantity_on_non_quantity_group_is_rejected(db_session, burger_options, menu):
    with pytest.raises(RuleViolation) as exc:
        compute_customizations(menu["burger"], [{"option_id": burger_options["rare"], "qty": 2}])
    assert exc.value.code == "CUSTOMIZATION_INVALID"


def test_option_max_qty_is_enforced(db_session, burger_options, menu):
    with pytest.raises(RuleViolation) as exc:
        compute_customizations(menu["burger"], [
            {"option_id": burger_options["rare"]},
            {"option_id": burger_options["cheese"], "qty": 4},
        ])
    assert exc.value.code == "CUSTOMIZATION_INVALID"


def test_inactive_or_foreign_option_is_rejected(db_session, burger_options, menu):
    with pytest.raises(RuleViolation) as exc:
        compute_customizations(menu["burger"], [
            {"option_id": burger_options["rare"]},
            {"option_id": burger_options["truffle"]},
        ])
    assert exc.value.code == "CUSTOMIZATION_INVALID"


def test_selections_for_item_without_groups_are_ignored(db_session, burger_options, menu):
    result = compute_customizations(menu["pizza"], [{"option_id": burger_options["cheese"]}])
    assert result.signature is None
    assert result.price_delta == 0


def test_selections_are_summed_and_priced(db_session, burger_options, menu):
    result = compute_customizations(menu["burger"], [
        {"option_id": burger_options["rare"], "qty": 1},
        {"option_id": burger_options["cheese"], "qty": 1},
        {"option_id": burger_options["cheese"], "qty": 1},
        {"option_id": burger_options["bacon"], "qty": 0},
    ])
    assert result.price_delta == Decimal("4.00")
    expected = build_signature({burger_options["rare"]: Decimal(1), burger_options["cheese"]: Decimal(2)})
    assert result.signature == expected
    assert [(r.option_name, r.qty) for r in result.rows] == [("Rare", Decimal(1)), ("Cheese", Decimal(2))]
