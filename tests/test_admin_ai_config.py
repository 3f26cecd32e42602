from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import orderbot.deps as deps_module
import orderbot.models  # noqa: F401
from orderbot.ai.agent_settings import load_agent_settings
from orderbot.core.database import Base, get_db
from orderbot.models.agent_config import AgentConfig
from orderbot.models.restaurant import Restaurant
from orderbot.routers.admin_ai import router as admin_ai_router
from orderbot.routers.internal_metrics import router as internal_metrics_router
from tests.fixtures_data import RESTAURANT


def _build_client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    db.add(Restaurant(**RESTAURANT))
    db.commit()

    app = FastAPI()
    app.include_router(admin_ai_router)
    app.include_router(internal_metrics_router)
    app.dependency_overrides[get_db] = lambda: db
    return TestClient(app), db


def test_get_config_creates_defaults():
    client, db = _build_client()

    response = client.get("/api/admin/1/ai/config")

    assert response.status_code == 200
    body = response.json()
    assert body["provider"] == "mock"
    assert body["enabled"] is False
    assert body["behavior_config"]["pending_products"] == {"allow_multiple": True, "expiration_minutes": 15}
    assert body["tools"] == []
    assert db.query(AgentConfig).count() == 1


def test_get_config_for_unknown_restaurant_returns_404():
    client, _ = _build_client()

    assert client.get("/api/admin/99/ai/config").status_code == 404


def test_update_config_persists_policy_and_tool_overrides():
    client, db = _build_client()

    response = client.put(
        "/api/admin/1/ai/config",
        json={
            "provider": "mock",
            "max_tool_rounds": 2,
            "behavior_config": {"pending_products": {"expiration_minutes": 30, "allow_multiple": False}},
            "orchestration_config": {
                "intents": {"browse_menu": {"allowed_tools": ["search_menu", "show_cart"], "decision_hint": "Mostra o menu."}}
            },
            "tools": [{"tool_name": "show_cart", "enabled": False}],
        },
    )

    assert response.status_code == 200
    assert response.json()["tools"][0]["tool_name"] == "show_cart"

    settings = load_agent_settings(db, 1)
    assert settings.max_tool_rounds == 2
    assert settings.behavior.pending_products.expiration_minutes == 30
    assert settings.behavior.pending_products.allow_multiple is False
    allowed = settings.policy.resolve("browse_menu")
    assert allowed.names == ["search_menu"]
    assert allowed.hint == "Mostra o menu."


def test_update_rejects_unknown_tool_in_policy():
    client, db = _build_client()

    response = client.put(
        "/api/admin/1/ai/config",
        json={"orchestration_config": {"intents": {"browse_menu": {"allowed_tools": ["launch_rocket"]}}}},
    )

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["message"] == "orchestration_config inválido"
    assert any("launch_rocket" in error for error in detail["errors"])
    assert db.query(AgentConfig).count() == 0


def test_update_rejects_out_of_range_expiration():
    client, _ = _build_client()

    response = client.put(
        "/api/admin/1/ai/config",
        json={"behavior_config": {"pending_products": {"expiration_minutes": 0}}},
    )

    assert response.status_code == 400
    assert any("expiration_minutes" in error for error in response.json()["detail"]["errors"])


def test_update_rejects_unknown_tool_override():
    client, _ = _build_client()

    response = client.put("/api/admin/1/ai/config", json={"tools": [{"tool_name": "launch_rocket"}]})

    assert response.status_code == 400


def test_admin_token_is_required_when_configured(monkeypatch):
    monkeypatch.setattr(deps_module, "ADMIN_API_TOKEN", "segredo")
    client, _ = _build_client()

    assert client.get("/api/admin/1/ai/config").status_code == 401
    assert client.get("/api/admin/1/ai/config", headers={"X-Admin-Token": "errado"}).status_code == 401
    assert client.get("/api/admin/1/ai/config", headers={"X-Admin-Token": "segredo"}).status_code == 200
    assert client.get("/internal/metrics/turns", headers={"X-Admin-Token": "segredo"}).status_code == 200


def test_stored_invalid_behavior_falls_back_to_defaults():
    _, db = _build_client()
    db.add(AgentConfig(restaurant_id=1, behavior_config={"pending_products": {"expiration_minutes": -5}}))
    db.commit()

    settings = load_agent_settings(db, 1)

    assert settings.behavior.pending_products.expiration_minutes == 15
