from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from tunnel_watch.errors import AccountFetchError
from tunnel_watch.inventory import AccountGroup


DEFAULT_API_BASE = "https://api.cloudflare.com/client/v4"


@dataclass(frozen=True)
class ObservedUnit:
    name: str
    unit_id: str
    status: str
    account_id: str

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"


def _first_api_error(data: dict[str, Any]) -> str:
    errors = data.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        msg = str(errors[0].get("message") or "").strip()
        if msg:
            return msg
    return "API error"


def parse_tunnel_listing(data: Any, *, account_id: str) -> list[ObservedUnit]:
    if not isinstance(data, dict):
        raise AccountFetchError(account_id, "unexpected response (not a JSON object)")
    if not data.get("success"):
        raise AccountFetchError(account_id, _first_api_error(data))
    result = data.get("result")
    if not isinstance(result, list):
        raise AccountFetchError(account_id, "unexpected response (result is not a list)")

    units: list[ObservedUnit] = []
    for item in result:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        units.append(
            ObservedUnit(
                name=name,
                unit_id=str(item.get("id") or ""),
                status=str(item.get("status") or "unknown"),
                account_id=account_id,
            )
        )
    return units


async def fetch_account_units(
    client: httpx.AsyncClient,
    group: AccountGroup,
    *,
    api_base: str = DEFAULT_API_BASE,
    timeout: float = 8.0,
) -> list[ObservedUnit]:
    url = f"{api_base.rstrip('/')}/accounts/{group.account_id}/tunnels"
    try:
        resp = await client.get(
            url,
            params={"is_deleted": "false"},
            headers={"Authorization": f"Bearer {group.credential}", "Content-Type": "application/json"},
            timeout=timeout,
        )
    except httpx.TimeoutException as exc:
        raise AccountFetchError(group.account_id, "request timed out") from exc
    except httpx.HTTPError as exc:
        raise AccountFetchError(group.account_id, f"{type(exc).__name__}: {exc}") from exc

    try:
        data = resp.json()
    except ValueError:
        data = None
    if resp.status_code >= 400:
        detail = _first_api_error(data) if isinstance(data, dict) else resp.reason_phrase
        raise AccountFetchError(group.account_id, f"HTTP {resp.status_code}: {detail}")
    return parse_tunnel_listing(data, account_id=group.account_id)
