"""
Integration Tests for whale_monitor/api/routes/telegram.py

Bot commands through the webhook
"""

import pytest

from whale_monitor.core.config import settings
from whale_monitor.services.subscriptions import active_subscriptions


def update(text, user_id=42, chat_id=4200, update_id=1):
    return {
        "update_id": update_id,
        "message": {
            "message_id": update_id,
            "from": {"id": user_id, "is_bot": False, "first_name": "Tester"},
            "chat": {"id": chat_id, "type": "private"},
            "date": 1760000000,
            "text": text,
        },
    }


@pytest.mark.integration
def test_webhook_status(test_client):
    response = test_client.get("/telegram/webhook")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.integration
def test_subscribe_and_status_via_webhook(test_client, fake_transport, test_db_session):
    """Test /subscribe_critical stores the subscription and replies in chat"""
    response = test_client.post("/telegram/webhook", json=update("/subscribe_critical"))

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert active_subscriptions(test_db_session, 42) == ["critical_whales"]
    assert "Critical Whale Alerts" in fake_transport.sent_to("4200")[0]

    test_client.post("/telegram/webhook", json=update("/status", update_id=2))
    assert "CRITICAL WHALES" in fake_transport.sent_to("4200")[1]


@pytest.mark.integration
def test_unsubscribe_all_via_webhook(test_client, test_db_session):
    test_client.post("/telegram/webhook", json=update("/subscribe_whales"))
    test_client.post("/telegram/webhook", json=update("/unsubscribe_all", update_id=2))

    test_db_session.expire_all()
    assert active_subscriptions(test_db_session, 42) == []


@pytest.mark.integration
def test_update_without_text_is_ignored(test_client, fake_transport):
    body = update("ignored")
    del body["message"]["text"]

    response = test_client.post("/telegram/webhook", json=body)

    assert response.json() == {"status": "ignored"}
    assert fake_transport.sent == []


@pytest.mark.integration
def test_reply_failure_still_acknowledged(test_client, fake_transport, test_db_session):
    """Test an undeliverable reply does not fail the update (no redelivery)"""
    fake_transport.failing_chats.add("4200")

    response = test_client.post("/telegram/webhook", json=update("/subscribe_exchanges"))

    assert response.status_code == 200
    assert active_subscriptions(test_db_session, 42) == ["exchange_deposits"]


@pytest.mark.integration
@pytest.mark.security
def test_webhook_secret_enforced(test_client, monkeypatch):
    """Test configured secret header is required"""
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "hook-secret")

    rejected = test_client.post("/telegram/webhook", json=update("/start"))
    assert rejected.status_code == 401

    accepted = test_client.post(
        "/telegram/webhook",
        json=update("/start"),
        headers={"X-Telegram-Bot-Api-Secret-Token": "hook-secret"},
    )
    assert accepted.status_code == 200
