from __future__ import annotations

from fastapi.testclient import TestClient

from tunnel_watch.app import create_app
from tunnel_watch.webhook import SECRET_HEADER


def _client(settings_factory, fake_apis, kv, **overrides) -> TestClient:
    app = create_app(settings_factory(**overrides), kv=kv, http_client=fake_apis.client())
    return TestClient(app)


def _press(data: str, chat_id: int = 4242) -> dict:
    return {
        "update_id": 1,
        "callback_query": {"id": "cb-9", "data": data, "message": {"message_id": 3, "chat": {"id": chat_id}}},
    }


def test_healthz(settings_factory, fake_apis, kv) -> None:
    with _client(settings_factory, fake_apis, kv) as client:
        r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_state_page_returns_snapshot(settings_factory, fake_apis, kv) -> None:
    fake_apis.listings["ID1"] = [{"id": "abc", "name": "tunA", "status": "down"}]
    with _client(settings_factory, fake_apis, kv) as client:
        r = client.get("/")
    assert r.status_code == 200
    body = r.json()
    assert body["summary"]["unhealthy"] == 1
    assert body["units"][0]["target"] == "own/repo"
    # viewing state never remediates or alerts
    assert fake_apis.calls("api.github.com") == []
    assert fake_apis.calls("api.telegram.org") == []


def test_state_page_reports_configuration_error(settings_factory, fake_apis, kv) -> None:
    with _client(settings_factory, fake_apis, kv, inventory_text="") as client:
        r = client.get("/")
    assert r.status_code == 500
    assert r.json()["detail"].startswith("configuration_error")


def test_trigger_endpoint_forces_dispatch(settings_factory, fake_apis, kv) -> None:
    with _client(settings_factory, fake_apis, kv) as client:
        ok = client.get("/trigger", params={"name": "tunA"})
        unknown = client.get("/trigger", params={"name": "ghost"})
        missing = client.get("/trigger")

    assert ok.status_code == 200
    assert ok.json() == {
        "success": True,
        "message": "remediation workflow dispatched to own/repo",
        "outcome": "triggered",
    }
    assert unknown.json()["success"] is False
    assert unknown.json()["outcome"] == "no-target"
    assert missing.status_code == 422
    assert len(fake_apis.calls("api.github.com")) == 1


def test_mute_endpoints(settings_factory, fake_apis, kv) -> None:
    with _client(settings_factory, fake_apis, kv) as client:
        first = client.get("/mute", params={"name": "tunA"})
        again = client.get("/mute", params={"name": "tunA", "action": "mute"})
        unmute = client.get("/mute", params={"name": "tunA", "action": "unmute"})
        bad = client.get("/mute", params={"name": "tunA", "action": "snooze"})
        perm = client.get("/permanent-mute", params={"name": "tunB"})
        perm_again = client.get("/permanent-mute", params={"name": "tunB"})

    assert first.json()["changed"] is True
    assert first.json()["message"] == "tunA muted"
    assert again.json()["changed"] is False
    assert unmute.json()["message"] == "tunA unmuted"
    assert unmute.json()["muted"] is False
    assert bad.status_code == 400
    assert perm.json()["changed"] is True
    assert perm_again.json()["message"] == "tunB already permanently muted"
    assert kv.snapshot()["permanent-mutes"] == ["tunB"]
    assert kv.snapshot()["temporary-mutes"] == []


def test_admin_token_guards_manual_endpoints(settings_factory, fake_apis, kv) -> None:
    with _client(settings_factory, fake_apis, kv, admin_token="adm") as client:
        missing = client.get("/mute", params={"name": "tunA"})
        wrong = client.get("/mute", params={"name": "tunA"}, headers={"Authorization": "Bearer nope"})
        right = client.get("/mute", params={"name": "tunA"}, headers={"Authorization": "Bearer adm"})

    assert missing.status_code == 401
    assert wrong.status_code == 403
    assert right.status_code == 200


def test_callback_from_foreign_chat_is_forbidden(settings_factory, fake_apis, kv) -> None:
    with _client(settings_factory, fake_apis, kv) as client:
        r = client.post("/interactive-callback", json=_press("mute:tunA", chat_id=1))
    assert r.status_code == 403
    assert r.json()["detail"] == "chat_not_allowed"
    assert kv.snapshot() == {}
    assert fake_apis.requests == []


def test_callback_secret_and_json_errors(settings_factory, fake_apis, kv) -> None:
    with _client(settings_factory, fake_apis, kv, webhook_secret="s3cret") as client:
        no_secret = client.post("/interactive-callback", json=_press("mute:tunA"))
        bad_json = client.post(
            "/interactive-callback",
            content=b"{not json",
            headers={SECRET_HEADER: "s3cret", "Content-Type": "application/json"},
        )
        ok = client.post("/interactive-callback", json=_press("mute:tunA"), headers={SECRET_HEADER: "s3cret"})

    assert no_secret.status_code == 401
    assert bad_json.status_code == 400
    assert ok.status_code == 200
    assert ok.json()["stage"] == "acknowledged"
    assert ok.json()["acknowledged"] is True


def test_callback_mute_press(settings_factory, fake_apis, kv) -> None:
    with _client(settings_factory, fake_apis, kv) as client:
        r = client.post("/interactive-callback", json=_press("mute:tunA"))

    assert r.status_code == 200
    assert r.json()["action"] == "mute"
    assert [m["name"] for m in kv.snapshot()["temporary-mutes"]] == ["tunA"]
    assert fake_apis.telegram_payloads("sendMessage")[0]["text"] == "🔕 Muted tunA for 24h"


def test_callback_fix_press_with_broken_inventory_returns_ok(settings_factory, fake_apis, kv) -> None:
    with _client(settings_factory, fake_apis, kv, inventory_text="") as client:
        r = client.post("/interactive-callback", json=_press("fix:tunA"))

    assert r.status_code == 200
    assert r.json()["acknowledged"] is True
    assert len(fake_apis.calls("api.telegram.org", "/answerCallbackQuery")) == 1
