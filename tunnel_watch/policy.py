"""Mute and daily-quota policy on top of a shared key/value store.

Stored shapes::

    temporary-mutes -> [{"name": str, "expiry": unix_ts}, ...]
    permanent-mutes -> [str, ...]
    quota:<name>    -> {"count": int, "date": "YYYY-MM-DD"}

Each operation touches a single key with one read and at most one write, so the
only race is two callers updating the same key at once; the loser's update is
dropped, the stored value stays well-formed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from tunnel_watch.kv import KeyValueStore


logger = structlog.get_logger(__name__)

TEMPORARY_MUTES_KEY = "temporary-mutes"
PERMANENT_MUTES_KEY = "permanent-mutes"
QUOTA_KEY_PREFIX = "quota:"


def load_timezone(name: str):
    cleaned = (name or "").strip()
    if not cleaned or cleaned.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(cleaned)
    except ZoneInfoNotFoundError:
        logger.warning("timezone_not_found_fallback_utc", tz=cleaned)
        return timezone.utc


def quota_key(name: str) -> str:
    return f"{QUOTA_KEY_PREFIX}{name}"


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    count_after: int


@dataclass(frozen=True)
class QuotaState:
    count: int
    date: str


def _coerce_temporary(value: Any) -> dict[str, float]:
    if not isinstance(value, list):
        return {}
    out: dict[str, float] = {}
    for item in value:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        if not name:
            continue
        try:
            out[name] = float(item.get("expiry"))
        except (TypeError, ValueError):
            continue
    return out


def _coerce_names(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for item in value:
        s = str(item or "").strip()
        if s and s not in out:
            out.append(s)
    return out


def _coerce_quota(value: Any) -> QuotaState:
    if not isinstance(value, dict):
        return QuotaState(count=0, date="")
    try:
        count = max(0, int(value.get("count") or 0))
    except (TypeError, ValueError):
        count = 0
    return QuotaState(count=count, date=str(value.get("date") or ""))


def _encode_temporary(entries: dict[str, float]) -> list[dict[str, Any]]:
    return [{"name": name, "expiry": expiry} for name, expiry in entries.items()]


class PolicyStore:
    def __init__(
        self,
        kv: KeyValueStore,
        *,
        daily_cap: int = 3,
        mute_ttl_seconds: float = 24 * 3600,
        tz: str = "Asia/Shanghai",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.kv = kv
        self.daily_cap = max(0, int(daily_cap))
        self.mute_ttl_seconds = float(mute_ttl_seconds)
        self.tz = load_timezone(tz)
        self.clock = clock

    def today(self) -> str:
        return datetime.fromtimestamp(self.clock(), tz=self.tz).date().isoformat()

    # --- temporary mutes ---

    async def _load_temporary(self, *, purge: bool) -> dict[str, float]:
        entries = _coerce_temporary(await self.kv.get(TEMPORARY_MUTES_KEY))
        if not purge:
            return entries
        now = self.clock()
        live = {name: expiry for name, expiry in entries.items() if expiry > now}
        if len(live) != len(entries):
            await self.kv.put(TEMPORARY_MUTES_KEY, _encode_temporary(live))
            logger.info("expired_mutes_purged", purged=len(entries) - len(live))
        return live

    async def temporary_mutes(self) -> dict[str, float]:
        """Active temporary mutes as name -> expiry timestamp. Expired entries are purged."""
        return await self._load_temporary(purge=True)

    async def purge_expired_mutes(self) -> int:
        before = _coerce_temporary(await self.kv.get(TEMPORARY_MUTES_KEY))
        after = await self._load_temporary(purge=True)
        return len(before) - len(after)

    async def set_temporary_mute(self, name: str, ttl_seconds: float | None = None) -> bool:
        """Mute `name` until now + ttl, replacing any previous expiry.

        Returns True when the unit was not already temporarily muted.
        """
        entries = await self._load_temporary(purge=True)
        ttl = self.mute_ttl_seconds if ttl_seconds is None else float(ttl_seconds)
        is_new = name not in entries
        entries[name] = self.clock() + max(1.0, ttl)
        await self.kv.put(TEMPORARY_MUTES_KEY, _encode_temporary(entries))
        logger.info("temporary_mute_set", unit=name, ttl_seconds=ttl, new=is_new)
        return is_new

    async def clear_temporary_mute(self, name: str) -> bool:
        entries = await self._load_temporary(purge=False)
        if name not in entries:
            return False
        del entries[name]
        await self.kv.put(TEMPORARY_MUTES_KEY, _encode_temporary(entries))
        logger.info("temporary_mute_cleared", unit=name)
        return True

    # --- permanent mutes ---

    async def permanent_mutes(self) -> list[str]:
        return _coerce_names(await self.kv.get(PERMANENT_MUTES_KEY))

    async def set_permanent_mute(self, name: str) -> bool:
        names = await self.permanent_mutes()
        if name in names:
            return False
        names.append(name)
        await self.kv.put(PERMANENT_MUTES_KEY, names)
        logger.info("permanent_mute_set", unit=name)
        return True

    async def clear_permanent_mute(self, name: str) -> bool:
        names = await self.permanent_mutes()
        if name not in names:
            return False
        names.remove(name)
        await self.kv.put(PERMANENT_MUTES_KEY, names)
        logger.info("permanent_mute_cleared", unit=name)
        return True

    async def is_effectively_muted(self, name: str) -> bool:
        if name in await self.permanent_mutes():
            return True
        return name in await self._load_temporary(purge=True)

    # --- quota ---

    async def quota(self, name: str, today: str | None = None) -> QuotaState:
        """Stored counter for `name`, reported as zero when it belongs to an earlier day."""
        today = today or self.today()
        state = _coerce_quota(await self.kv.get(quota_key(name)))
        if state.date != today:
            return QuotaState(count=0, date=today)
        return state

    async def consume_quota(self, name: str, today: str | None = None) -> QuotaDecision:
        today = today or self.today()
        state = _coerce_quota(await self.kv.get(quota_key(name)))
        count = state.count if state.date == today else 0
        if count >= self.daily_cap:
            logger.info("quota_exhausted", unit=name, count=count, cap=self.daily_cap, date=today)
            return QuotaDecision(allowed=False, count_after=count)
        count += 1
        await self.kv.put(quota_key(name), {"count": count, "date": today})
        return QuotaDecision(allowed=True, count_after=count)
