import pytest
from fastapi.testclient import TestClient

from app import main
from app.providers.bet_summary import StatsBetSummaryProvider
from app.services import session_manager as session_module
from app.services.conversation_store import InMemoryKeyValueStore
from app.services.session_manager import SessionManager
from tests.conftest import FakeGreetingProvider, FakeStrategyProvider

SESSION = "abc123"


@pytest.fixture
def manager(monkeypatch):
    manager = SessionManager(
        InMemoryKeyValueStore(),
        greeting_provider=FakeGreetingProvider(),
        strategy_provider=FakeStrategyProvider(),
        summary_provider=StatsBetSummaryProvider(),
        settlement_delay=0,
    )
    monkeypatch.setattr(session_module, "session_manager", manager)
    return manager


@pytest.fixture
def client(manager):
    return TestClient(main.app)


def chat(client, user_input):
    response = client.post("/chat", json={"session_id": SESSION, "user_input": user_input})
    assert response.status_code == 200
    return response.json()


def test_health(client):
    assert client.get("/health/status").json() == {"status": "ok", "active_sessions": 0}


def test_chat_requires_login(client):
    response = client.post("/chat", json={"session_id": "nobody", "user_input": "100"})

    assert response.status_code == 401


def test_full_betting_flow(client):
    profile = client.post("/login", json={"session_id": SESSION}).json()
    assert profile["user"]["plan"] == "basic"
    assert profile["balance"] == 500

    started = client.post("/chat/start", json={"session_id": SESSION}).json()
    assert started["state"] == "AWAITING_AMOUNT"
    assert started["messages"][0]["text"] == "Hi Test User! How much would you like to bet?"
    assert started["input_enabled"] is True

    assert chat(client, "100")["state"] == "AWAITING_CONFIRMATION"
    upsell = chat(client, {"label": "Yes, place bets", "value": "yes"})
    assert upsell["state"] == "PROMPT_PREMIUM"
    assert upsell["balance"] == 500

    assert chat(client, {"label": "Go to Profile", "value": "profile"})["navigate_to"] == "profile"
    upgraded = client.post("/profile/plan", json={"session_id": SESSION, "plan": "premium"}).json()
    assert upgraded["user"]["plan"] == "premium"

    assert chat(client, "new_bet")["state"] == "AWAITING_AMOUNT"
    assert chat(client, "100")["state"] == "AWAITING_CONFIRMATION"
    placed = chat(client, {"label": "Yes, place bets", "value": "yes"})
    assert placed["state"] == "IDLE_AFTER_NO"
    assert placed["balance"] == 400
    assert placed["new_messages"][0]["text"].startswith("Bets placed for a total of 100.00€!")

    bets = client.get(f"/bets/{SESSION}").json()
    assert len(bets) == 3
    assert {b["result"] for b in bets} == {"pending"}

    summary = client.get(f"/bets/{SESSION}/summary").json()
    assert "3 bets" in summary["summary"]

    assert client.post("/wallet/recharge", json={"session_id": SESSION}).json()["balance"] == 500


def test_start_is_idempotent_over_http(client):
    client.post("/login", json={"session_id": SESSION})

    client.post("/chat/start", json={"session_id": SESSION})
    again = client.post("/chat/start", json={"session_id": SESSION}).json()

    assert len(again["messages"]) == 1
    assert again["new_messages"] == []


def test_recharge_rejects_negative_amounts(client):
    client.post("/login", json={"session_id": SESSION})

    response = client.post("/wallet/recharge", json={"session_id": SESSION, "amount": -5})

    assert response.status_code == 422


def test_logout_clears_everything(client, manager):
    client.post("/login", json={"session_id": SESSION})
    client.post("/chat/start", json={"session_id": SESSION})
    chat(client, "100")

    client.post("/logout", json={"session_id": SESSION})

    assert client.get(f"/chat/{SESSION}").status_code == 401
    assert manager.kv_store.get(f"{SESSION}:chat_messages") is None
    assert manager.kv_store.get(f"{SESSION}:wallet_balance") is None


def test_fresh_login_discards_previous_conversation(client):
    client.post("/login", json={"session_id": SESSION})
    client.post("/chat/start", json={"session_id": SESSION})
    chat(client, "100")

    client.post("/login", json={"session_id": SESSION})
    conversation = client.get(f"/chat/{SESSION}").json()

    assert conversation["messages"] == []
    assert conversation["state"] == "GREETING"


def test_preview_login_has_demo_history(client):
    profile = client.post("/login", json={"session_id": SESSION, "preview": True}).json()

    assert profile["user"]["plan"] == "premium"
    bets = client.get(f"/bets/{SESSION}").json()
    assert [b["game_date"] for b in bets] == ["18/05/2025", "15/05/2025"]


def test_session_survives_restart(manager):
    session = manager.login(SESSION)
    session.wallet.debit(50)

    restarted = SessionManager(
        manager.kv_store,
        greeting_provider=FakeGreetingProvider(),
        strategy_provider=FakeStrategyProvider(),
        summary_provider=StatsBetSummaryProvider(),
    )
    restored = restarted.get_session(SESSION)

    assert restored.user.name == "Test User"
    assert restored.wallet.balance() == 450


@pytest.mark.asyncio
async def test_chat_rejects_input_while_a_turn_is_running(client, manager):
    session = manager.login(SESSION)
    await session.controller.start(session.user)

    async with session.lock:
        response = client.post("/chat", json={"session_id": SESSION, "user_input": "100"})

    assert response.status_code == 409
    assert session.controller.conversation.state == "AWAITING_AMOUNT"
    assert len(session.controller.conversation.messages) == 1
