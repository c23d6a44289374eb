"""Inbound Telegram button presses.

Each press moves through ``received -> authenticated -> action-applied ->
acknowledged``. Anything that fails authentication stops at ``received``: no
policy mutation, no dispatch, nothing sent back to Telegram.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog
from pydantic import ValidationError

from tunnel_watch.cycle import TunnelWatch
from tunnel_watch.dispatcher import DispatchOutcome
from tunnel_watch.errors import AuthorizationError, TunnelWatchError
from tunnel_watch.notifier import ACTION_FIX, ACTION_MUTE, parse_callback_data
from tunnel_watch.schema import CallbackQuery, TelegramUpdate


logger = structlog.get_logger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


class CallbackStage(str, Enum):
    RECEIVED = "received"
    AUTHENTICATED = "authenticated"
    ACTION_APPLIED = "action-applied"
    ACKNOWLEDGED = "acknowledged"


@dataclass
class CallbackOutcome:
    stage: CallbackStage
    action: str | None = None
    unit: str | None = None
    reply: str | None = None
    acknowledged: bool = False
    replied: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "stage": self.stage.value,
            "action": self.action,
            "unit": self.unit,
            "acknowledged": self.acknowledged,
            "replied": self.replied,
        }


def _format_hours(seconds: float) -> str:
    hours = seconds / 3600.0
    return f"{hours:g}h"


class WebhookController:
    def __init__(self, watch: TunnelWatch, *, chat_id: str, secret: str = "") -> None:
        self.watch = watch
        self.chat_id = str(chat_id or "").strip()
        self.secret = str(secret or "").strip()

    def check_secret(self, header_value: str | None) -> None:
        if not self.secret:
            return
        if not header_value:
            raise AuthorizationError("missing_webhook_secret", status_code=401)
        if not hmac.compare_digest(header_value.strip(), self.secret):
            raise AuthorizationError("invalid_webhook_secret")

    def check_recipient(self, query: CallbackQuery) -> str:
        if query.message is None:
            raise AuthorizationError("missing_chat")
        chat_id = str(query.message.chat.id)
        if not self.chat_id or not hmac.compare_digest(chat_id, self.chat_id):
            raise AuthorizationError("chat_not_allowed")
        return chat_id

    async def apply(self, action: str, name: str) -> str:
        if action == ACTION_FIX:
            result = await self.watch.trigger(name)
            if result.outcome is DispatchOutcome.TRIGGERED:
                return f"✅ Remediation dispatched for {name}"
            if result.outcome is DispatchOutcome.NO_TARGET:
                return f"⚠️ Cannot fix {name}: {result.message}"
            return f"❌ Remediation request failed for {name}: {result.message}"

        if action == ACTION_MUTE:
            ttl = self.watch.policy.mute_ttl_seconds
            is_new = await self.watch.policy.set_temporary_mute(name)
            if is_new:
                return f"🔕 Muted {name} for {_format_hours(ttl)}"
            return f"🔕 {name} was already muted; mute extended to {_format_hours(ttl)}"

        return f"❓ Unknown action: {action or '(empty)'}"

    async def handle(self, payload: Any, *, secret_header: str | None = None) -> CallbackOutcome:
        """Authenticate and apply one Telegram update.

        Raises AuthorizationError before any side effect when the secret or the
        chat does not match. Updates without a callback query are ignored.
        """
        self.check_secret(secret_header)
        try:
            update = TelegramUpdate.model_validate(payload)
        except ValidationError as exc:
            raise ValueError(f"invalid telegram update: {exc.error_count()} error(s)") from exc

        query = update.callback_query
        if query is None:
            return CallbackOutcome(stage=CallbackStage.RECEIVED)

        try:
            chat_id = self.check_recipient(query)
        except AuthorizationError as exc:
            logger.warning("callback_rejected", reason=exc.reason, data=query.data)
            raise

        action, name = parse_callback_data(query.data)
        outcome = CallbackOutcome(stage=CallbackStage.AUTHENTICATED, action=action, unit=name)

        try:
            reply = await self.apply(action, name)
        except (TunnelWatchError, OSError) as exc:
            logger.error("callback_action_failed", action=action, unit=name, error=str(exc))
            reply = f"❌ {action} failed for {name}: {exc}"
        else:
            logger.info("callback_applied", action=action, unit=name)
        outcome.stage = CallbackStage.ACTION_APPLIED
        outcome.reply = reply

        # Both are sent even if one fails: the ack clears the button spinner, the reply carries the outcome.
        outcome.acknowledged = await self.watch.notifier.acknowledge(query.id, "Received")
        outcome.replied = await self.watch.notifier.send(reply, chat_id=chat_id)
        outcome.stage = CallbackStage.ACKNOWLEDGED
        return outcome
