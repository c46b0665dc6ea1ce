# Overview: Validates menu-item customization selections and derives price delta, merge signature and snapshot rows.

"""
Customization Service

WHY: A "Burger + extra cheese x2" line must price correctly, respect the
menu's selection rules, and only collapse into an existing line when the
selections are identical. The canonical signature is that identity.

RULES (per menu item, active groups/options only):
- Selections with qty <= 0 are ignored; the rest are summed per option.
- Every selected option must belong to an active group of the item.
- Non-quantity groups accept qty == 1 only.
- Quantity groups honor option.max_qty when set.
- Per group, the count of distinct selected options must be >= the minimum
  (max(min_select, 1) when required) and <= max_select when set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from ..extensions import db
from ..models import MenuItemOption, MenuItemOptionGroup
from ..money import ZERO, EPSILON, quantize_qty, to_decimal
from .errors import RuleViolation


CUSTOMIZATION_REQUIRED = "CUSTOMIZATION_REQUIRED"
CUSTOMIZATION_INVALID = "CUSTOMIZATION_INVALID"


@dataclass(frozen=True)
class CustomizationSelection:
    option_id: int
    qty: Decimal = Decimal("1")


@dataclass(frozen=True)
class CustomizationRow:
    group_id: int
    group_name: str
    option_id: int
    option_name: str
    qty: Decimal
    price_delta: Decimal


@dataclass
class CustomizationResult:
    price_delta: Decimal = ZERO
    signature: str | None = None
    rows: list[CustomizationRow] = field(default_factory=list)


def coerce_selections(raw) -> list[CustomizationSelection]:
    """Accept CustomizationSelection objects or {"option_id", "qty"} mappings."""
    selections = []
    for entry in raw or []:
        if isinstance(entry, CustomizationSelection):
            selections.append(entry)
            continue
        try:
            option_id = int(entry["option_id"])
            qty = to_decimal(entry.get("qty", 1))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise RuleViolation(CUSTOMIZATION_INVALID, "Malformed customization selection") from exc
        selections.append(CustomizationSelection(option_id=option_id, qty=qty))
    return selections


def qty_signature(qty: Decimal) -> str:
    """Up to 3 decimals, trailing zeros stripped: 1 -> "1", 1.50 -> "1.5"."""
    text = format(quantize_qty(qty), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def build_signature(option_qty: dict[int, Decimal]) -> str | None:
    pairs = sorted(f"{option_id}:{qty_signature(qty)}" for option_id, qty in option_qty.items() if qty > 0)
    if not pairs:
        return None
    return "|".join(pairs)


def _validate_group_counts(groups: Iterable[MenuItemOptionGroup], selected_counts: dict[int, int]) -> None:
    for group in groups:
        count = selected_counts.get(group.id, 0)
        minimum = max(group.min_select or 0, 1) if group.is_required else (group.min_select or 0)
        if minimum > 0 and count < minimum:
            raise RuleViolation(
                CUSTOMIZATION_REQUIRED,
                f"Group '{group.name}' needs at least {minimum} selection(s)",
                {"group_id": group.id},
            )
        if group.max_select is not None and count > group.max_select:
            raise RuleViolation(
                CUSTOMIZATION_INVALID,
                f"Group '{group.name}' allows at most {group.max_select} selection(s)",
                {"group_id": group.id},
            )


def compute_customizations(menu_item_id: int, selections) -> CustomizationResult:
    """
    Validate selections for a menu item and price them.

    Returns:
        CustomizationResult(price_delta, signature, rows)

    Raises:
        RuleViolation: CUSTOMIZATION_REQUIRED / CUSTOMIZATION_INVALID
    """
    groups = (
        db.session.query(MenuItemOptionGroup)
        .filter(MenuItemOptionGroup.menu_item_id == menu_item_id, MenuItemOptionGroup.is_active.is_(True))
        .order_by(MenuItemOptionGroup.sort_order, MenuItemOptionGroup.id)
        .all()
    )
    if not groups:
        return CustomizationResult()

    option_qty: dict[int, Decimal] = {}
    for selection in coerce_selections(selections):
        qty = to_decimal(selection.qty)
        if qty <= 0:
            continue
        option_qty[selection.option_id] = option_qty.get(selection.option_id, ZERO) + qty

    if not option_qty:
        _validate_group_counts(groups, {})
        return CustomizationResult()

    groups_by_id = {g.id: g for g in groups}
    options = (
        db.session.query(MenuItemOption)
        .filter(
            MenuItemOption.id.in_(list(option_qty.keys())),
            MenuItemOption.group_id.in_(list(groups_by_id.keys())),
            MenuItemOption.is_active.is_(True),
        )
        .order_by(MenuItemOption.sort_order, MenuItemOption.id)
        .all()
    )
    if len(options) != len(option_qty):
        raise RuleViolation(CUSTOMIZATION_INVALID, "Unknown or inactive customization option")

    selected_counts: dict[int, int] = {}
    rows: list[CustomizationRow] = []
    price_delta = ZERO

    for option in sorted(options, key=lambda o: (groups_by_id[o.group_id].sort_order, o.group_id, o.sort_order, o.id)):
        group = groups_by_id[option.group_id]
        qty = option_qty[option.id]

        if not group.allow_quantity and abs(qty - 1) > EPSILON:
            raise RuleViolation(
                CUSTOMIZATION_INVALID,
                f"Option '{option.name}' cannot be selected more than once",
                {"option_id": option.id},
            )
        if group.allow_quantity and option.max_qty is not None and qty > option.max_qty:
            raise RuleViolation(
                CUSTOMIZATION_INVALID,
                f"Option '{option.name}' allows at most {option.max_qty}",
                {"option_id": option.id},
            )

        selected_counts[group.id] = selected_counts.get(group.id, 0) + 1
        delta = to_decimal(option.price_delta)
        price_delta += delta * qty
        rows.append(CustomizationRow(
            group_id=group.id,
            group_name=group.name,
            option_id=option.id,
            option_name=option.name,
            qty=qty,
            price_delta=delta,
        ))

    _validate_group_counts(groups, selected_counts)

    return CustomizationResult(price_delta=price_delta, signature=build_signature(option_qty), rows=rows)
