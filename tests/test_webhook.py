from __future__ import annotations

from typing import Any

import pytest

from tunnel_watch.errors import AuthorizationError
from tunnel_watch.webhook import CallbackStage, WebhookController


def _press(data: str, chat_id: int | str = 4242) -> dict[str, Any]:
    return {
        "update_id": 10,
        "callback_query": {
            "id": "cb-1",
            "from": {"id": 7, "username": "ops"},
            "data": data,
            "message": {"message_id": 99, "chat": {"id": chat_id}},
        },
    }


@pytest.mark.asyncio
async def test_press_from_foreign_chat_changes_nothing(make_watch, fake_apis, kv) -> None:
    watch = make_watch()
    controller = WebhookController(watch, chat_id="4242")
    before = kv.snapshot()

    with pytest.raises(AuthorizationError) as excinfo:
        await controller.handle(_press("mute:tunA", chat_id=1111))

    assert excinfo.value.reason == "chat_not_allowed"
    assert kv.snapshot() == before
    assert fake_apis.requests == []


@pytest.mark.asyncio
async def test_press_rejected_when_no_chat_configured(make_watch, fake_apis) -> None:
    controller = WebhookController(make_watch(), chat_id="")

    with pytest.raises(AuthorizationError):
        await controller.handle(_press("fix:tunA"))

    assert fake_apis.requests == []


@pytest.mark.asyncio
async def test_secret_header_is_checked_first(make_watch, fake_apis) -> None:
    controller = WebhookController(make_watch(), chat_id="4242", secret="s3cret")

    with pytest.raises(AuthorizationError) as missing:
        await controller.handle(_press("mute:tunA"))
    with pytest.raises(AuthorizationError) as wrong:
        await controller.handle(_press("mute:tunA"), secret_header="nope")

    assert missing.value.status_code == 401
    assert wrong.value.status_code == 403
    assert fake_apis.requests == []

    outcome = await controller.handle(_press("mute:tunA"), secret_header="s3cret")
    assert outcome.stage is CallbackStage.ACKNOWLEDGED


@pytest.mark.asyncio
async def test_mute_press_mutes_then_acks_and_replies(make_watch, fake_apis) -> None:
    watch = make_watch()
    controller = WebhookController(watch, chat_id="4242")

    first = await controller.handle(_press("mute:tunA"))
    second = await controller.handle(_press("mute:tunA"))

    assert first.stage is CallbackStage.ACKNOWLEDGED
    assert first.acknowledged and first.replied
    assert first.reply == "🔕 Muted tunA for 24h"
    assert second.reply == "🔕 tunA was already muted; mute extended to 24h"
    assert list(await watch.policy.temporary_mutes()) == ["tunA"]

    acks = fake_apis.telegram_payloads("answerCallbackQuery")
    assert acks[0] == {"callback_query_id": "cb-1", "text": "Received"}
    replies = fake_apis.telegram_payloads("sendMessage")
    assert replies[0]["chat_id"] == "4242"


@pytest.mark.asyncio
async def test_fix_press_forces_remediation(make_watch, fake_apis) -> None:
    watch = make_watch(daily_cap=0)
    await watch.policy.set_permanent_mute("tunA")
    controller = WebhookController(watch, chat_id="4242")

    outcome = await controller.handle(_press("fix:tunA"))

    assert outcome.action == "fix"
    assert outcome.unit == "tunA"
    assert outcome.reply == "✅ Remediation dispatched for tunA"
    assert len(fake_apis.calls("api.github.com")) == 1
    assert len(fake_apis.calls("api.telegram.org", "/answerCallbackQuery")) == 1


@pytest.mark.asyncio
async def test_fix_press_reports_failure(make_watch, fake_apis) -> None:
    fake_apis.github_status = 404
    controller = WebhookController(make_watch(), chat_id="4242")

    outcome = await controller.handle(_press("fix:tunA"))

    assert outcome.reply is not None
    assert outcome.reply.startswith("❌ Remediation request failed for tunA: GitHub error 404")
    assert outcome.stage is CallbackStage.ACKNOWLEDGED


@pytest.mark.asyncio
async def test_unknown_action_is_acknowledged_without_side_effects(make_watch, fake_apis, kv) -> None:
    controller = WebhookController(make_watch(), chat_id="4242")

    outcome = await controller.handle(_press("reboot:tunA"))

    assert outcome.reply == "❓ Unknown action: reboot"
    assert kv.snapshot() == {}
    assert fake_apis.calls("api.github.com") == []
    assert len(fake_apis.calls("api.telegram.org", "/answerCallbackQuery")) == 1


@pytest.mark.asyncio
async def test_update_without_callback_is_ignored(make_watch, fake_apis) -> None:
    controller = WebhookController(make_watch(), chat_id="4242")

    outcome = await controller.handle({"update_id": 1, "message": {"text": "hi"}})

    assert outcome.stage is CallbackStage.RECEIVED
    assert fake_apis.requests == []


@pytest.mark.asyncio
async def test_malformed_update_raises_value_error(make_watch) -> None:
    controller = WebhookController(make_watch(), chat_id="4242")

    with pytest.raises(ValueError, match="invalid telegram update"):
        await controller.handle({"callback_query": {"data": "fix:tunA"}})


@pytest.mark.asyncio
async def test_fix_press_with_broken_inventory_is_still_acknowledged(make_watch, fake_apis) -> None:
    controller = WebhookController(make_watch(inventory_text=""), chat_id="4242")

    outcome = await controller.handle(_press("fix:tunA"))

    assert outcome.stage is CallbackStage.ACKNOWLEDGED
    assert outcome.acknowledged and outcome.replied
    assert outcome.reply is not None
    assert outcome.reply.startswith("❌ fix failed for tunA: inventory is empty")
    assert len(fake_apis.calls("api.telegram.org", "/answerCallbackQuery")) == 1
    assert fake_apis.telegram_payloads("sendMessage")[0]["text"] == outcome.reply
    assert fake_apis.calls("api.github.com") == []


@pytest.mark.asyncio
async def test_mute_press_with_unwritable_store_is_still_acknowledged(make_watch, fake_apis, kv) -> None:
    watch = make_watch()

    async def failing_put(key: str, value: Any) -> None:
        raise PermissionError("read-only file system")

    kv.put = failing_put
    controller = WebhookController(watch, chat_id="4242")

    outcome = await controller.handle(_press("mute:tunA"))

    assert outcome.stage is CallbackStage.ACKNOWLEDGED
    assert outcome.reply == "❌ mute failed for tunA: read-only file system"
    assert len(fake_apis.calls("api.telegram.org", "/answerCallbackQuery")) == 1
