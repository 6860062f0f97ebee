"""
Household client tool catalog.

Names and parameters match the tools configured on the remote agent.
Agents configured by the web app call the camelCase names, so those are
registered as aliases of the same handlers.
"""

from __future__ import annotations

from typing import Any, Callable

from agent_tools.registry import ParamSpec, ToolHandlerError, ToolRegistry
from services.household_service import HouseholdService


EndRequester = Callable[[str], None]
Navigator = Callable[[str], None]


def register_household_tools(
    registry: ToolRegistry,
    service: HouseholdService,
    *,
    request_end: EndRequester,
    navigate: Navigator | None = None,
) -> None:
    """
    Register every household tool on `registry`.

    request_end schedules end_conversation after a short delay so the agent
    can finish its closing sentence; navigate forwards a route to the UI.
    """

    async def check_inventory(query: str) -> str:
        return await service.check_inventory(query)

    async def add_to_cart(item_name: str, reason: str = "") -> str:
        return await service.add_to_cart(item_name, reason)

    async def log_meal(description: str, meal_type: str = "snack") -> str:
        return await service.log_meal(description, meal_type)

    async def search_recipes(constraints: dict[str, Any] | None = None) -> str:
        return await service.search_recipes(constraints)

    async def check_allergens(ingredient: str) -> str:
        return await service.check_allergens(ingredient)

    async def update_profile(field: str, value: Any) -> str:
        return await service.update_profile(field, value)

    async def navigate_to(route: str) -> str:
        if navigate is None:
            raise ToolHandlerError("navigation is not available on this surface")
        navigate(route)
        return f"SUCCESS: Navigated to {route}"

    async def end_conversation(reason: str = "agent") -> str:
        request_end(reason)
        return "SUCCESS: Conversation ended"

    registry.register(
        "check_inventory",
        (ParamSpec("query"),),
        check_inventory,
        "Look up household inventory items by name.",
    )
    registry.register(
        "add_to_cart",
        (ParamSpec("item_name"), ParamSpec("reason", required=False)),
        add_to_cart,
        "Add an item to the shopping list; a reason is required.",
    )
    registry.register(
        "log_meal",
        (ParamSpec("description"), ParamSpec("meal_type", required=False)),
        log_meal,
        "Log a meal the user ate.",
    )
    registry.register(
        "search_recipes",
        (ParamSpec("constraints", "object", required=False),),
        search_recipes,
        "Suggest recipes, excluding the user's allergens.",
    )
    registry.register(
        "check_allergens",
        (ParamSpec("ingredient"),),
        check_allergens,
        "Check an ingredient against household allergies and pet toxic foods.",
    )
    for name in ("update_profile", "updateProfile"):
        registry.register(
            name,
            (ParamSpec("field"), ParamSpec("value", "any")),
            update_profile,
            "Update one profile field.",
        )
    for name in ("navigate_to", "navigateTo"):
        registry.register(
            name,
            (ParamSpec("route"),),
            navigate_to,
            "Navigate the app to a route.",
        )
    for name in ("end_conversation", "endConversation", "completeConversation"):
        registry.register(
            name,
            (ParamSpec("reason", required=False),),
            end_conversation,
            "End the voice conversation.",
        )
