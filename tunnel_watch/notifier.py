from __future__ import annotations

from typing import Any

import httpx
import structlog

from tunnel_watch.aggregator import AccountResult
from tunnel_watch.dispatcher import DispatchOutcome, DispatchResult
from tunnel_watch.errors import NotificationDeliveryError
from tunnel_watch.reconciler import ReconciledUnit
from tunnel_watch.telegram import (
    TelegramConfig,
    answer_callback_query,
    inline_keyboard,
    redact_telegram_response,
    send_telegram_message,
)


logger = structlog.get_logger(__name__)

ACTION_FIX = "fix"
ACTION_MUTE = "mute"


def callback_data(action: str, name: str) -> str:
    return f"{action}:{name}"


def parse_callback_data(data: str) -> tuple[str, str]:
    action, _sep, name = (data or "").partition(":")
    return action.strip(), name.strip()


def remediation_summary(result: DispatchResult | None, *, daily_cap: int) -> str:
    if result is None:
        return "remediation not attempted"
    if result.outcome is DispatchOutcome.TRIGGERED:
        if result.quota_count is None:
            return "remediation triggered"
        return f"remediation triggered ({result.quota_count}/{daily_cap})"
    if result.outcome is DispatchOutcome.QUOTA_EXHAUSTED:
        return f"daily limit reached ({daily_cap}/{daily_cap}), fix manually"
    if result.outcome is DispatchOutcome.NO_TARGET:
        return "no remediation configured"
    if result.outcome is DispatchOutcome.FAILED:
        return f"remediation failed: {result.message}"
    return result.message


def build_unit_alert(
    unit: ReconciledUnit, result: DispatchResult | None, *, daily_cap: int
) -> tuple[str, dict[str, Any]]:
    lines = [
        f"🚨 {unit.name} ({unit.alias}): {unit.status}",
        remediation_summary(result, daily_cap=daily_cap),
    ]
    buttons: list[tuple[str, str]] = []
    if unit.target is not None:
        buttons.append(("🛠 Force fix", callback_data(ACTION_FIX, unit.name)))
    buttons.append(("🔕 Mute", callback_data(ACTION_MUTE, unit.name)))
    return "\n".join(lines), inline_keyboard(buttons)


def build_account_error_alert(result: AccountResult) -> str:
    lines = [f"❌ {result.group.alias}: monitoring API error: {result.error}"]
    names = list(result.group.unit_names)
    if names:
        lines.append(f"Unknown state: {', '.join(names)}")
    return "\n".join(lines)


class NotificationGateway:
    """Telegram delivery. Failures are logged and reported as False, never raised."""

    def __init__(self, http_client: httpx.AsyncClient, config: TelegramConfig | None, *, daily_cap: int = 3) -> None:
        self.http_client = http_client
        self.config = config
        self.daily_cap = daily_cap

    @property
    def enabled(self) -> bool:
        return self.config is not None

    def _log_failure(self, what: str, data: dict) -> None:
        err = NotificationDeliveryError(f"{what}: {redact_telegram_response(data)}")
        logger.warning("notification_delivery_failed", error=str(err))

    async def send(self, text: str, *, reply_markup: dict[str, Any] | None = None, chat_id: str | None = None) -> bool:
        if self.config is None:
            logger.debug("notification_skipped_not_configured")
            return False
        ok, data = await send_telegram_message(
            self.http_client, self.config, text, reply_markup=reply_markup, chat_id=chat_id
        )
        if not ok:
            self._log_failure("sendMessage", data)
        return ok

    async def send_unit_alert(self, unit: ReconciledUnit, result: DispatchResult | None) -> bool:
        text, markup = build_unit_alert(unit, result, daily_cap=self.daily_cap)
        ok = await self.send(text, reply_markup=markup)
        logger.info("unit_alert", unit=unit.name, delivered=ok)
        return ok

    async def send_account_error(self, result: AccountResult) -> bool:
        return await self.send(build_account_error_alert(result))

    async def acknowledge(self, callback_query_id: str, text: str) -> bool:
        if self.config is None:
            return False
        ok, data = await answer_callback_query(self.http_client, self.config, callback_query_id, text)
        if not ok:
            self._log_failure("answerCallbackQuery", data)
        return ok
