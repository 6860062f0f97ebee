"""
Context strings sent to the remote agent.

Pure formatting over store rows: the initial household snapshot, one-line
inventory deltas, cart snapshots, and the dynamic variables sent at
session open.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping, Sequence

from orchestrator.runtime_context import HouseholdStore

from constants import (
    CART_PREVIEW_ITEMS,
    EXPIRING_SOON_DAYS,
    RECENT_INVENTORY_LIMIT,
    WELL_STOCKED_LIMIT,
)

Row = Mapping[str, Any]


@dataclass(frozen=True)
class HouseholdSnapshot:
    profile: Row = field(default_factory=dict)
    members: tuple[Row, ...] = ()
    pets: tuple[Row, ...] = ()
    inventory: tuple[Row, ...] = ()
    cart: tuple[Row, ...] = ()


async def fetch_household_snapshot(
    store: HouseholdStore, *, user_id: str, household_id: str
) -> HouseholdSnapshot:
    profile = await store.read("profiles", user_id) or {}
    members = await store.select("household_members", {"user_id": user_id})
    pets = await store.select("pets", {"user_id": user_id})
    inventory = await store.select("inventory", {"household_id": household_id})
    cart = await fetch_pending_cart(store, household_id)
    return HouseholdSnapshot(
        profile=profile,
        members=tuple(members),
        pets=tuple(pets),
        inventory=tuple(inventory),
        cart=tuple(cart),
    )


async def fetch_pending_cart(store: HouseholdStore, household_id: str) -> list[dict[str, Any]]:
    return await store.select("shopping_list", {"household_id": household_id, "status": "pending"})


def days_until(expiry: Any, today: date) -> int | None:
    """Whole days from today to an ISO date; None when unset or unparsable."""
    if not expiry:
        return None
    if isinstance(expiry, date):
        return (expiry - today).days
    try:
        return (date.fromisoformat(str(expiry)[:10]) - today).days
    except ValueError:
        return None


def _is_low(item: Row) -> bool:
    fill = item.get("fill_level")
    return item.get("status") in ("low", "critical") or (fill is not None and fill < 30)


def _is_well_stocked(item: Row) -> bool:
    fill = item.get("fill_level")
    return item.get("status") == "sufficient" or (fill is not None and fill >= 60)


def _all_allergies(snapshot: HouseholdSnapshot) -> list[str]:
    seen: dict[str, None] = {}
    for allergen in snapshot.profile.get("allergies") or []:
        seen.setdefault(allergen, None)
    for member in snapshot.members:
        for allergen in member.get("allergies") or []:
            seen.setdefault(allergen, None)
    return list(seen)


# =============================================================================
# Initial snapshot
# =============================================================================

def build_initial_context(snapshot: HouseholdSnapshot, today: date) -> str:
    lines = ["HOUSEHOLD CONTEXT:"]

    profile = snapshot.profile
    if profile.get("user_name"):
        lines.append(f"- User: {profile['user_name']}")
        if profile.get("calculated_tdee"):
            lines.append(f"  TDEE: {profile['calculated_tdee']} calories/day")

    if snapshot.members:
        lines.append(f"- Members ({len(snapshot.members)}):")
        for m in snapshot.members:
            line = f"  {m.get('name') or 'Unnamed'} ({m.get('age') or '?'}yo)"
            if m.get("allergies"):
                line += f" - allergies: {', '.join(m['allergies'])}"
            lines.append(line)

    if snapshot.pets:
        lines.append(f"- Pets ({len(snapshot.pets)}):")
        for p in snapshot.pets:
            lines.append(f"  {p.get('name')} ({p.get('species')}, {p.get('age') or '?'}yo)")
            if p.get("toxic_flags_enabled"):
                lines.append("    Toxic food alerts enabled")

    lines.append(f"\nINVENTORY ({len(snapshot.inventory)} items):")

    low = [i for i in snapshot.inventory if _is_low(i)]
    if low:
        lines.append(
            "LOW STOCK: "
            + ", ".join(f"{i.get('name')} ({i.get('quantity') or i.get('fill_level')})" for i in low)
        )

    expiring = []
    for item in snapshot.inventory:
        days = days_until(item.get("expiry_date"), today)
        if days is not None and 0 < days <= EXPIRING_SOON_DAYS:
            expiring.append(f"{item.get('name')} ({days}d)")
    if expiring:
        lines.append(f"EXPIRING SOON: {', '.join(expiring)}")

    stocked = [i.get("name") for i in snapshot.inventory if _is_well_stocked(i)][:WELL_STOCKED_LIMIT]
    if stocked:
        lines.append(f"Well stocked: {', '.join(str(n) for n in stocked)}")

    if snapshot.cart:
        names = ", ".join(str(i.get("item_name")) for i in snapshot.cart)
        lines.append(f"\nSHOPPING CART ({len(snapshot.cart)} items): {names}")

    allergies = _all_allergies(snapshot)
    if allergies:
        lines.append(f"\nALLERGIES TO AVOID: {', '.join(allergies)}")

    return "\n".join(lines)


# =============================================================================
# Deltas
# =============================================================================

def build_inventory_update(change_type: str, item: Row) -> str:
    name = item.get("name")
    if change_type == "INSERT":
        qty = item.get("quantity") or item.get("fill_level") or "unknown qty"
        return f'INVENTORY UPDATE: New item added - "{name}" ({item.get("category")}, {qty})'
    if change_type == "UPDATE":
        status = " (LOW STOCK)" if item.get("status") in ("low", "critical") else ""
        return f'INVENTORY UPDATE: "{name}" status changed{status}'
    if change_type == "DELETE":
        return f'INVENTORY UPDATE: Item removed - "{name}"'
    return ""


def build_cart_update(items: Sequence[Row]) -> str:
    if not items:
        return "SHOPPING CART: Empty"
    preview = ", ".join(str(i.get("item_name")) for i in items[:CART_PREVIEW_ITEMS])
    more = "..." if len(items) > CART_PREVIEW_ITEMS else ""
    return f"SHOPPING CART UPDATE: Now has {len(items)} items ({preview}{more})"


# =============================================================================
# Dynamic variables
# =============================================================================

def build_dynamic_variables(
    snapshot: HouseholdSnapshot,
    recent_messages: Sequence[Row] = (),
) -> dict[str, str]:
    """Flat string variables the agent prompt template interpolates."""
    profile = snapshot.profile
    tdee = profile.get("calculated_tdee")

    adults = profile.get("household_adults")
    kids = profile.get("household_kids")
    household = f"{len(snapshot.members)} members"
    if adults is not None or kids is not None:
        household += f" ({adults or 0} adults, {kids or 0} kids)"

    pets = ", ".join(f"{p.get('name')} ({p.get('species')})" for p in snapshot.pets) or "none"
    recent = ", ".join(
        str(i.get("name")) for i in snapshot.inventory[-RECENT_INVENTORY_LIMIT:]
    ) or "none"
    history = "\n".join(f"{m.get('role')}: {m.get('message')}" for m in recent_messages)

    return {
        "user_name": str(profile.get("user_name") or "there"),
        "calculated_tdee": str(tdee) if tdee is not None else "Not calculated",
        "allergies": ", ".join(_all_allergies(snapshot)) or "none",
        "household_summary": household,
        "pets_summary": pets,
        "recent_inventory": recent,
        "recent_history": history,
    }
