from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import httpx


DEFAULT_API_BASE = "https://api.telegram.org"
TELEGRAM_MAX_MESSAGE_LEN = 3900


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str
    api_base: str = DEFAULT_API_BASE

    def method_url(self, method: str) -> str:
        return f"{self.api_base.rstrip('/')}/bot{self.bot_token}/{method}"


def inline_keyboard(buttons: list[tuple[str, str]]) -> dict[str, Any]:
    """One row of callback buttons from (label, callback_data) pairs."""
    return {"inline_keyboard": [[{"text": label, "callback_data": data} for label, data in buttons]]}


async def _call(
    client: httpx.AsyncClient, config: TelegramConfig, method: str, payload: dict[str, Any]
) -> tuple[bool, dict]:
    try:
        resp = await client.post(config.method_url(method), json=payload, timeout=15.0)
        data = resp.json()
        if not isinstance(data, dict):
            return False, {"ok": False, "error": f"unexpected response (HTTP {resp.status_code})"}
        return bool(data.get("ok")), data
    except Exception as e:
        msg = f"{type(e).__name__}: {e}"
        if config.bot_token:
            msg = msg.replace(config.bot_token, "<redacted>")
        return False, {"ok": False, "error": msg}


async def send_telegram_message(
    client: httpx.AsyncClient,
    config: TelegramConfig,
    text: str,
    *,
    reply_markup: dict[str, Any] | None = None,
    chat_id: str | None = None,
) -> tuple[bool, dict]:
    payload: dict[str, Any] = {"chat_id": chat_id or config.chat_id, "text": text[:TELEGRAM_MAX_MESSAGE_LEN]}
    if reply_markup:
        payload["reply_markup"] = reply_markup
    return await _call(client, config, "sendMessage", payload)


async def answer_callback_query(
    client: httpx.AsyncClient, config: TelegramConfig, callback_query_id: str, text: str
) -> tuple[bool, dict]:
    return await _call(
        client, config, "answerCallbackQuery", {"callback_query_id": callback_query_id, "text": text}
    )


def redact_telegram_response(data: dict) -> str:
    safe = {"ok": data.get("ok")}
    if isinstance(data.get("result"), dict):
        safe["result"] = {"message_id": data["result"].get("message_id")}
    if data.get("description"):
        safe["description"] = data.get("description")
    if data.get("error"):
        safe["error"] = data.get("error")
    return json.dumps(safe, ensure_ascii=False)
