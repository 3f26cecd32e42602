import copy

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import orderbot.deps as deps_module
import orderbot.models  # noqa: F401
import orderbot.routers.webhook as webhook_module
from orderbot.ai.intent import KeywordIntentClassifier
from orderbot.ai.mock_provider import MockProvider
from orderbot.ai.schema import LLMResponse
from orderbot.core.database import Base, get_db
from orderbot.core.errors import LLMProviderError
from orderbot.deps import get_engine, get_scheduler, get_turn_runner, require_admin_token
from orderbot.fsm.engine import OrderSessionEngine
from orderbot.models.ai_message_log import AIMessageLog
from orderbot.models.debounce_queue import DebounceQueueEntry
from orderbot.models.menu_category import MenuCategory
from orderbot.models.menu_item import MenuItem
from orderbot.models.restaurant import Restaurant
from orderbot.models.whatsapp_config import WhatsAppConfig
from orderbot.routers.admin_whatsapp import router as admin_whatsapp_router
from orderbot.routers.debounce import router as debounce_router
from orderbot.routers.simulator import router as simulator_router
from orderbot.routers.webhook import router as webhook_router
from orderbot.services.delivery import GeocodeResult
from tests.fixtures_data import (
    CATEGORIES,
    CUSTOMER_PHONE,
    GEOCODED_ADDRESS,
    MENU_ITEMS,
    RESTAURANT,
    WHATSAPP_STATUS_WEBHOOK,
    WHATSAPP_TEXT_WEBHOOK,
)


class _FakeGeocoder:
    def geocode(self, address):
        return GeocodeResult(**GEOCODED_ADDRESS)


class _FailingProvider:
    name = "failing"

    def complete(self, request) -> LLMResponse:
        raise LLMProviderError("timeout")


def _build_client(engine_override=None):
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    db.add(Restaurant(**RESTAURANT))
    db.add_all(MenuCategory(**category) for category in CATEGORIES)
    db.add_all(MenuItem(**item) for item in MENU_ITEMS)
    db.commit()

    calls = []

    def _runner(restaurant_id, phone, text):
        calls.append((restaurant_id, phone, text))
        return {"reply_text": "ok"}

    app = FastAPI()
    app.include_router(webhook_router)
    app.include_router(debounce_router)
    app.include_router(simulator_router)
    app.include_router(admin_whatsapp_router)

    turn_engine = engine_override or OrderSessionEngine(
        MockProvider(), KeywordIntentClassifier(), geocoder=_FakeGeocoder()
    )
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_scheduler] = lambda: None
    app.dependency_overrides[get_turn_runner] = lambda: _runner
    app.dependency_overrides[get_engine] = lambda: turn_engine
    app.dependency_overrides[require_admin_token] = lambda: None
    return TestClient(app), db, calls


def test_webhook_verification(monkeypatch):
    monkeypatch.setattr(webhook_module, "META_WA_VERIFY_TOKEN", "segredo")
    client, _, _ = _build_client()

    ok = client.get(
        "/api/whatsapp/1/webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "segredo", "hub.challenge": "42"},
    )
    denied = client.get(
        "/api/whatsapp/1/webhook",
        params={"hub.mode": "subscribe", "hub.verify_token": "errado", "hub.challenge": "42"},
    )

    assert ok.status_code == 200
    assert ok.text == "42"
    assert denied.status_code == 403


def test_inbound_text_is_queued_once():
    client, db, calls = _build_client()

    first = client.post("/api/whatsapp/1/webhook", json=WHATSAPP_TEXT_WEBHOOK)
    retry = client.post("/api/whatsapp/1/webhook", json=WHATSAPP_TEXT_WEBHOOK)

    assert first.status_code == 200
    message = first.json()["messages"][0]
    assert message["status"] == "queued"
    assert retry.json()["messages"][0]["status"] == "duplicate"

    entry = db.query(DebounceQueueEntry).one()
    assert entry.id == message["queue_id"]
    assert entry.customer_phone == CUSTOMER_PHONE
    assert entry.messages[0]["body"] == "quero uma pizza margherita"
    assert calls == []


def test_second_message_joins_the_pending_entry():
    client, db, _ = _build_client()
    follow_up = copy.deepcopy(WHATSAPP_TEXT_WEBHOOK)
    message = follow_up["entry"][0]["changes"][0]["value"]["messages"][0]
    message["id"] = "wamid.HBgM002"
    message["text"]["body"] = "e uma coca"

    client.post("/api/whatsapp/1/webhook", json=WHATSAPP_TEXT_WEBHOOK)
    client.post("/api/whatsapp/1/webhook", json=follow_up)

    entry = db.query(DebounceQueueEntry).one()
    assert [item["body"] for item in entry.messages] == ["quero uma pizza margherita", "e uma coca"]


def test_status_only_payload_is_ignored():
    client, db, _ = _build_client()

    response = client.post("/api/whatsapp/1/webhook", json=WHATSAPP_STATUS_WEBHOOK)

    assert response.json() == {"status": "ignored"}
    assert db.query(DebounceQueueEntry).count() == 0


def test_unknown_restaurant_returns_404():
    client, _, _ = _build_client()

    response = client.post("/api/whatsapp/99/webhook", json=WHATSAPP_TEXT_WEBHOOK)

    assert response.status_code == 404


def test_process_endpoint_waits_for_quiet_window():
    client, _, calls = _build_client()
    queued = client.post("/api/whatsapp/1/webhook", json=WHATSAPP_TEXT_WEBHOOK).json()
    queue_id = queued["messages"][0]["queue_id"]

    response = client.post("/internal/debounce/process", json={"queue_id": queue_id})
    missing = client.post("/internal/debounce/process", json={"queue_id": "nao-existe"})
    sweep = client.post("/internal/debounce/sweep")

    assert response.status_code == 200
    assert response.json()["status"] == "waiting"
    assert missing.status_code == 404
    assert sweep.json() == {"processed": 0, "results": []}
    assert calls == []


def test_simulator_runs_a_turn_and_logs_it():
    client, db, _ = _build_client()

    response = client.post(
        "/simulator/message",
        json={"restaurant_id": 1, "phone": CUSTOMER_PHONE, "text": "quero uma pizza margherita"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["intent"] == "browse_product"
    assert body["state_after"] == "confirming_item"
    logs = db.query(AIMessageLog).order_by(AIMessageLog.id.asc()).all()
    assert [entry.direction for entry in logs] == ["in", "out"]
    assert logs[1].tool_calls["executed"] == ["search_menu", "add_to_cart"]


def test_simulator_maps_errors_to_http_status():
    failing = OrderSessionEngine(_FailingProvider(), KeywordIntentClassifier(), geocoder=_FakeGeocoder())
    client, db, _ = _build_client(engine_override=failing)

    unknown = client.post("/simulator/message", json={"restaurant_id": 99, "phone": CUSTOMER_PHONE, "text": "oi"})
    broken = client.post("/simulator/message", json={"restaurant_id": 1, "phone": CUSTOMER_PHONE, "text": "oi"})

    assert unknown.status_code == 404
    assert broken.status_code == 502
    assert db.query(AIMessageLog).filter(AIMessageLog.error.isnot(None)).count() == 1


def test_webhook_verification_prefers_the_restaurant_token(monkeypatch):
    monkeypatch.setattr(webhook_module, "META_WA_VERIFY_TOKEN", "global")
    client, db, _ = _build_client()
    db.add(Restaurant(id=2, name="Hamburgueria Porto"))
    db.add(WhatsAppConfig(restaurant_id=1, verify_token="segredo-1", is_enabled=True))
    db.commit()

    def verify(restaurant_id, token):
        return client.get(
            f"/api/whatsapp/{restaurant_id}/webhook",
            params={"hub.mode": "subscribe", "hub.verify_token": token, "hub.challenge": "7"},
        ).status_code

    assert verify(1, "segredo-1") == 200
    assert verify(1, "global") == 403
    assert verify(2, "global") == 200
    assert verify(2, "segredo-1") == 403


def test_admin_whatsapp_config_masks_tokens_and_keeps_them_unless_asked():
    client, db, _ = _build_client()

    created = client.get("/api/admin/1/whatsapp/config")
    assert created.status_code == 200
    assert created.json()["is_enabled"] is False

    saved = client.put(
        "/api/admin/1/whatsapp/config",
        json={
            "phone_number_id": " REST1_PHONE ",
            "access_token": "EAAG-secret-9876",
            "verify_token": "segredo-1",
            "is_enabled": True,
            "update_token": True,
        },
    )
    body = saved.json()
    assert body["phone_number_id"] == "REST1_PHONE"
    assert body["access_token_masked"] == "****9876"
    assert "EAAG-secret-9876" not in saved.text

    client.put(
        "/api/admin/1/whatsapp/config",
        json={"phone_number_id": "REST1_PHONE", "verify_token": "segredo-2", "is_enabled": True},
    )
    stored = db.query(WhatsAppConfig).filter_by(restaurant_id=1).one()
    assert stored.access_token == "EAAG-secret-9876"
    assert stored.verify_token == "segredo-2"
    assert client.get("/api/admin/99/whatsapp/config").status_code == 404


def test_simulator_requires_the_admin_token(monkeypatch):
    monkeypatch.setattr(deps_module, "ADMIN_API_TOKEN", "admin-secret")
    client, _, _ = _build_client()
    client.app.dependency_overrides.pop(require_admin_token)
    payload = {"restaurant_id": 1, "phone": CUSTOMER_PHONE, "text": "oi"}

    denied = client.post("/simulator/message", json=payload)
    allowed = client.post("/simulator/message", json=payload, headers={"X-Admin-Token": "admin-secret"})

    assert denied.status_code == 401
    assert allowed.status_code == 200
