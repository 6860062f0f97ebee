"""
Household operations behind the agent's client tools.

Every method returns the sentence the agent will read back. Expected
failures (no household, missing reason) raise ToolHandlerError and
surface as "ERROR: ..." through the registry.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Protocol

from agent_tools.registry import ToolHandlerError
from orchestrator.runtime_context import HouseholdStore

from observability.logger import log_event, now_ms
from constants import INVENTORY_QUERY_LIMIT, PET_TOXIC_FOODS, RECIPE_PREVIEW_ITEMS


class MealAnalyzer(Protocol):
    async def analyze(self, description: str, meal_type: str) -> Mapping[str, Any]: ...


class RecipeSource(Protocol):
    async def suggest(self, constraints: Mapping[str, Any]) -> list[Mapping[str, Any]]: ...


# Spoken field name -> profile column
_PROFILE_COLUMNS: dict[str, str] = {
    "userName": "user_name",
    "dietaryValues": "dietary_preferences",
    "allergies": "allergies",
    "beautyProfile": "beauty_profile",
    "healthGoals": "health_goals",
    "lifestyleGoals": "lifestyle_goals",
}

_BIOMETRIC_COLUMNS: dict[str, str] = {
    "age": "user_age",
    "weight": "user_weight",
    "height": "user_height",
    "gender": "user_gender",
    "activityLevel": "user_activity_level",
}


def _qty(row: Mapping[str, Any]) -> str:
    qty = row.get("quantity") or 0
    unit = row.get("unit")
    return f"{qty} {unit}" if unit else f"{qty}"


class HouseholdService:
    def __init__(
        self,
        store: HouseholdStore,
        *,
        user_id: str,
        household_id: str,
        meal_analyzer: MealAnalyzer | None = None,
        recipe_source: RecipeSource | None = None,
        on_state_changed: Callable[[], Awaitable[None] | None] | None = None,
    ) -> None:
        self._store = store
        self.user_id = user_id
        self.household_id = household_id
        self._meals = meal_analyzer
        self._recipes = recipe_source
        self._on_state_changed = on_state_changed

    async def _changed(self) -> None:
        if self._on_state_changed is None:
            return
        result = self._on_state_changed()
        if result is not None:
            await result

    async def _profile(self) -> dict[str, Any]:
        return await self._store.read("profiles", self.user_id) or {}

    # ------------------------------------------------------------------
    # Inventory / cart
    # ------------------------------------------------------------------

    async def check_inventory(self, query: str) -> str:
        if not self.household_id:
            raise ToolHandlerError("No household found")
        items = await self._store.select(
            "inventory",
            {"household_id": self.household_id},
            name_contains=query,
            limit=INVENTORY_QUERY_LIMIT,
        )
        if not items:
            return f'No items found matching "{query}"'

        parts = []
        for item in items:
            status = " (LOW STOCK)" if item.get("status") == "low" else ""
            expiry = f" - expires {item['expiry_date']}" if item.get("expiry_date") else ""
            parts.append(f"{item.get('name')}: {_qty(item)}{status}{expiry}")
        return f"Found {len(items)} items: {', '.join(parts)}"

    async def add_to_cart(self, item_name: str, reason: str = "") -> str:
        if not reason or not reason.strip():
            raise ToolHandlerError("Reason is required")
        await self._store.insert(
            "shopping_list",
            {
                "household_id": self.household_id,
                "user_id": self.user_id,
                "item_name": item_name,
                "source": "voice",
                "status": "pending",
                "quantity": 1,
            },
        )
        await self._changed()
        return f"Added {item_name} to cart (reason: {reason})"

    # ------------------------------------------------------------------
    # Meals / recipes
    # ------------------------------------------------------------------

    async def log_meal(self, description: str, meal_type: str = "snack") -> str:
        nutrition: Mapping[str, Any] = {}
        if self._meals is not None:
            nutrition = await self._meals.analyze(description, meal_type)
        await self._store.insert(
            "meal_logs",
            {
                "user_id": self.user_id,
                "description": description,
                "meal_type": meal_type,
                "calories": nutrition.get("calories"),
                "protein": nutrition.get("protein"),
            },
        )
        await self._changed()
        calories = nutrition.get("calories") or "?"
        protein = nutrition.get("protein") or "?"
        return f"Logged: {description} ({calories} cal, {protein}g protein)"

    async def search_recipes(self, constraints: Mapping[str, Any] | None = None) -> str:
        profile = await self._profile()
        allergies = [a.lower() for a in profile.get("allergies") or []]
        merged = {**(constraints or {}), "excludeAllergens": allergies}

        if self._recipes is not None:
            recipes = list(await self._recipes.suggest(merged))
        else:
            recipes = await self._stored_recipes(merged)

        if not recipes:
            return "No recipes found matching your criteria"
        preview = ", ".join(
            f"{r.get('name')} ({r.get('cooking_time') or '?'}min)"
            for r in recipes[:RECIPE_PREVIEW_ITEMS]
        )
        return f"Found {len(recipes)} recipes: {preview}"

    async def _stored_recipes(self, constraints: Mapping[str, Any]) -> list[dict[str, Any]]:
        rows = await self._store.select("recipes", {"household_id": self.household_id})
        excluded = constraints.get("excludeAllergens") or []
        max_minutes = constraints.get("maxCookingTime")
        wanted = str(constraints.get("query") or "").lower()

        found = []
        for row in rows:
            ingredients = " ".join(row.get("ingredients") or []).lower()
            if any(allergen in ingredients for allergen in excluded):
                continue
            if max_minutes is not None and (row.get("cooking_time") or 0) > max_minutes:
                continue
            if wanted and wanted not in str(row.get("name", "")).lower() and wanted not in ingredients:
                continue
            found.append(row)
        return found

    # ------------------------------------------------------------------
    # Safety
    # ------------------------------------------------------------------

    async def check_allergens(self, ingredient: str) -> str:
        needle = ingredient.lower()
        warnings: list[str] = []

        profile = await self._profile()
        for allergen in profile.get("allergies") or []:
            if allergen.lower() in needle:
                warnings.append(f"WARNING: {ingredient} contains {allergen} (YOU are allergic)")

        members = await self._store.select("household_members", {"user_id": self.user_id})
        for member in members:
            who = member.get("name") or member.get("member_type") or "a household member"
            for allergen in member.get("allergies") or []:
                if allergen.lower() in needle:
                    warnings.append(f"WARNING: {ingredient} contains {allergen} ({who} is allergic)")

        pets = await self._store.select(
            "pets", {"user_id": self.user_id, "toxic_flags_enabled": True}
        )
        for toxic in PET_TOXIC_FOODS:
            if toxic in needle:
                for pet in pets:
                    warnings.append(
                        f"TOXIC WARNING: {ingredient} contains {toxic} - "
                        f"TOXIC to {pet.get('name')} ({pet.get('species')})"
                    )

        if warnings:
            return "\n".join(warnings)
        return f"SAFE: {ingredient} is safe for your household"

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def update_profile(self, field: str, value: Any) -> str:
        if field == "householdMembers":
            if not isinstance(value, list):
                raise ToolHandlerError("householdMembers must be a list")
            for member in value:
                await self._store.insert("household_members", {
                    "user_id": self.user_id,
                    "member_type": member.get("type") or "other",
                    "name": member.get("name"),
                    "age": member.get("age"),
                    "age_group": member.get("ageGroup"),
                    "allergies": member.get("allergies") or [],
                    "dietary_restrictions": member.get("dietaryRestrictions") or [],
                    "health_conditions": member.get("healthConditions") or [],
                    "gender": member.get("gender"),
                    "weight": member.get("weight"),
                    "height": member.get("height"),
                    "activity_level": member.get("activityLevel"),
                })
            await self._changed()
            return "Household members saved"

        if field == "household":
            if not isinstance(value, dict):
                raise ToolHandlerError("household must be an object")
            fields: dict[str, Any] = {
                "household_adults": value.get("adults") or 1,
                "household_kids": value.get("kids") or 0,
            }
            await self._add_pets(value)
        elif field == "userBiometrics":
            if not isinstance(value, dict):
                raise ToolHandlerError("userBiometrics must be an object")
            fields = {column: value.get(key) for key, column in _BIOMETRIC_COLUMNS.items()}
        elif field in _PROFILE_COLUMNS:
            fields = {_PROFILE_COLUMNS[field]: value}
        else:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "profile_unknown_field",
                "level": "warning",
                "field": field,
            })
            return "Unknown field"

        await self._store.update("profiles", self.user_id, fields)
        await self._changed()
        return f"Updated {field}"

    async def _add_pets(self, household: Mapping[str, Any]) -> None:
        pets: list[dict[str, Any]] = []
        for pet in household.get("petDetails") or []:
            pets.append({
                "name": pet.get("name"),
                "species": pet.get("type"),
                "breed": pet.get("breed"),
                "age": pet.get("age"),
            })
        for species, key in (("Dog", "dogs"), ("Cat", "cats")):
            for i in range(int(household.get(key) or 0)):
                pets.append({"name": f"{species} {i + 1}", "species": species})
        for pet in pets:
            await self._store.insert(
                "pets", {**pet, "user_id": self.user_id, "toxic_flags_enabled": True}
            )

