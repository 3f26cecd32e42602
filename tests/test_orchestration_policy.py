import pytest

from orderbot.ai.orchestration import (
    NEUTRAL_HINT,
    OrchestrationPolicy,
    ToolOverride,
    build_tool_overrides,
    resolve_allowed_tools,
    validate_orchestration_config,
)
from orderbot.core.errors import ConfigurationError
from orderbot.schemas.agent_config import parse_behavior_config, parse_tool_overrides


def test_default_policy_for_browse_menu_offers_only_search():
    allowed = resolve_allowed_tools("browse_menu")

    assert allowed.names == ["search_menu"]
    assert allowed.function_schemas()[0]["function"]["name"] == "search_menu"
    assert allowed.hint != NEUTRAL_HINT


def test_unknown_intent_gets_no_tools_and_neutral_hint():
    allowed = resolve_allowed_tools("dance")

    assert allowed.names == []
    assert allowed.hint == NEUTRAL_HINT


def test_unclear_intent_offers_nothing():
    assert resolve_allowed_tools("unclear").names == []


def test_custom_config_replaces_defaults():
    config = validate_orchestration_config(
        {"intents": {"browse_menu": {"allowed_tools": ["search_menu", "show_cart"], "decision_hint": "Mostra tudo."}}}
    )

    policy = OrchestrationPolicy(config)

    assert policy.resolve("browse_menu").names == ["search_menu", "show_cart"]
    assert policy.resolve("browse_menu").hint == "Mostra tudo."
    assert policy.resolve("finalize").names == []


def test_overrides_disable_reorder_and_describe_tools():
    overrides = {
        "add_to_cart": ToolOverride(enabled=False),
        "add_pending_item": ToolOverride(ordering=-1, description_override="Guarda para depois.", usage_rules="Só com 2+ produtos."),
    }

    allowed = resolve_allowed_tools("browse_product", overrides=overrides)

    assert allowed.names == ["add_pending_item", "search_menu"]
    pending_schema = allowed.function_schemas()[0]["function"]
    assert pending_schema["description"] == "Guarda para depois.\nRegras: Só com 2+ produtos."
    assert allowed.usage_rules() == {"add_pending_item": "Só com 2+ produtos."}


def test_build_tool_overrides_drops_unknown_names():
    overrides = build_tool_overrides(
        [
            {"tool_name": "show_cart", "enabled": False},
            {"tool_name": "launch_rocket", "enabled": True},
        ]
    )

    assert set(overrides) == {"show_cart"}
    assert overrides["show_cart"].enabled is False


def test_unknown_tool_in_config_fails_at_save_time():
    with pytest.raises(ConfigurationError) as exc_info:
        validate_orchestration_config({"intents": {"browse_menu": {"allowed_tools": ["launch_rocket"]}}})

    assert any("launch_rocket" in error for error in exc_info.value.errors)


def test_tool_override_list_rejects_unknown_and_duplicated_names():
    with pytest.raises(ConfigurationError) as exc_info:
        parse_tool_overrides(
            [
                {"tool_name": "launch_rocket"},
                {"tool_name": "show_cart"},
                {"tool_name": "show_cart", "enabled": False},
            ]
        )

    errors = exc_info.value.errors
    assert any(error.startswith("tools.0.") for error in errors)
    assert "tools: show_cart repetida" in errors


def test_behavior_config_validates_ranges_and_fills_defaults():
    behavior = parse_behavior_config({"pending_products": {"expiration_minutes": 30}})

    assert behavior.pending_products.expiration_minutes == 30
    assert behavior.pending_products.allow_multiple is True
    assert behavior.customer_profile.auto_load is True

    with pytest.raises(ConfigurationError):
        parse_behavior_config({"pending_products": {"expiration_minutes": 0}})
