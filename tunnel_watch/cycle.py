"""One reconciliation cycle, shared by every trigger.

The timer, the manual web endpoints and the Telegram callback each build their
own cycle against the same injected PolicyStore; nothing else is shared between
concurrent invocations.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import httpx
import structlog

from tunnel_watch.aggregator import AccountResult, FetchUnits, aggregate
from tunnel_watch.cloudflare import fetch_account_units
from tunnel_watch.dispatcher import ActionDispatcher, DispatchMode, DispatchOutcome, DispatchResult
from tunnel_watch.github import GitHubWorkflowClient
from tunnel_watch.inventory import Inventory, parse_inventory
from tunnel_watch.kv import JsonFileKeyValueStore, KeyValueStore
from tunnel_watch.notifier import NotificationGateway
from tunnel_watch.policy import PolicyStore
from tunnel_watch.reconciler import ReconciledUnit, reconcile, summarize
from tunnel_watch.settings import Settings
from tunnel_watch.telegram import TelegramConfig


logger = structlog.get_logger(__name__)


def account_rows(results: list[AccountResult]) -> list[dict[str, Any]]:
    return [{"account": r.group.alias, "ok": r.ok, "error": r.error, "units": len(r.units)} for r in results]


class AlertState(str, Enum):
    SENT = "sent"
    SUPPRESSED = "suppressed"
    UNDELIVERED = "undelivered"
    DISABLED = "disabled"


@dataclass
class CycleReport:
    units: dict[str, ReconciledUnit]
    accounts: list[AccountResult]
    dispatches: dict[str, DispatchResult] = field(default_factory=dict)
    alerts: dict[str, AlertState] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": summarize(self.units),
            "accounts": account_rows(self.accounts),
            "dispatches": {
                name: {"outcome": r.outcome.value, "message": r.message, "quota_count": r.quota_count}
                for name, r in self.dispatches.items()
            },
            "alerts": {name: state.value for name, state in self.alerts.items()},
        }


class TunnelWatch:
    def __init__(
        self,
        settings: Settings,
        *,
        policy: PolicyStore,
        dispatcher: ActionDispatcher,
        notifier: NotificationGateway,
        fetch: FetchUnits,
    ) -> None:
        self.settings = settings
        self.policy = policy
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.fetch = fetch

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        kv: KeyValueStore | None = None,
    ) -> TunnelWatch:
        policy = PolicyStore(
            kv if kv is not None else JsonFileKeyValueStore(Path(settings.state_path)),
            daily_cap=settings.daily_cap,
            mute_ttl_seconds=settings.mute_ttl_seconds,
            tz=settings.quota_timezone,
        )
        remediation = GitHubWorkflowClient(
            http_client,
            workflow_file=settings.workflow_file,
            api_base=settings.github_api_base,
            timeout=settings.remediation_timeout_seconds,
        )
        telegram_cfg = None
        if settings.telegram_enabled:
            telegram_cfg = TelegramConfig(
                bot_token=settings.telegram_bot_token,
                chat_id=settings.telegram_chat_id,
                api_base=settings.telegram_api_base,
            )
        fetch = functools.partial(
            fetch_account_units,
            http_client,
            api_base=settings.cloudflare_api_base,
            timeout=settings.fetch_timeout_seconds,
        )
        return cls(
            settings,
            policy=policy,
            dispatcher=ActionDispatcher(policy, remediation, muted_units_remediate=settings.muted_units_remediate),
            notifier=NotificationGateway(http_client, telegram_cfg, daily_cap=settings.daily_cap),
            fetch=fetch,
        )

    def load_inventory(self) -> Inventory:
        # Parsed on every invocation so edits take effect without a restart.
        return parse_inventory(self.settings.inventory_text, default_branch=self.settings.default_branch)

    async def observe(self) -> tuple[dict[str, ReconciledUnit], list[AccountResult]]:
        inventory = self.load_inventory()
        results = await aggregate(
            inventory.groups,
            self.fetch,
            max_concurrent=self.settings.max_concurrent,
            timeout=self.settings.fetch_timeout_seconds,
        )
        return reconcile(inventory, results), results

    async def handle_down_unit(self, unit: ReconciledUnit) -> tuple[DispatchResult, AlertState]:
        result = await self.dispatcher.dispatch(unit, DispatchMode.NORMAL)
        if result.outcome is DispatchOutcome.MUTED or await self.policy.is_effectively_muted(unit.name):
            logger.info("alert_suppressed", unit=unit.name, outcome=result.outcome.value)
            return result, AlertState.SUPPRESSED
        if not self.notifier.enabled:
            return result, AlertState.DISABLED
        sent = await self.notifier.send_unit_alert(unit, result)
        return result, AlertState.SENT if sent else AlertState.UNDELIVERED

    async def run_cycle(self) -> CycleReport:
        """Scheduled path: reconcile, then remediate and alert for every down unit."""
        await self.policy.purge_expired_mutes()
        units, results = await self.observe()
        report = CycleReport(units=units, accounts=results)

        for unit in units.values():
            if not unit.is_down:
                continue
            result, alert = await self.handle_down_unit(unit)
            report.dispatches[unit.name] = result
            report.alerts[unit.name] = alert

        if self.settings.alert_on_fetch_error:
            for result in results:
                if not result.ok:
                    await self.notifier.send_account_error(result)

        logger.info(
            "cycle_completed",
            summary=summarize(units),
            dispatched=sum(1 for r in report.dispatches.values() if r.attempted),
        )
        return report

    async def trigger(self, name: str) -> DispatchResult:
        """Forced remediation for one declared unit; skips the live fetch and all policy gates."""
        inventory = self.load_inventory()
        declared = inventory.units.get(name)
        if declared is None:
            return DispatchResult(name, DispatchOutcome.NO_TARGET, f"unknown unit: {name}")
        return await self.dispatcher.dispatch(ReconciledUnit.from_declared(declared), DispatchMode.FORCED)

    async def snapshot(self) -> dict[str, Any]:
        """Reconciled state plus the mute and quota lookups a dashboard needs."""
        units, results = await self.observe()
        temporary = await self.policy.temporary_mutes()
        permanent = await self.policy.permanent_mutes()
        today = self.policy.today()
        quotas: dict[str, int] = {}
        for name in units:
            quotas[name] = (await self.policy.quota(name, today)).count
        return {
            "date": today,
            "daily_cap": self.policy.daily_cap,
            "summary": summarize(units),
            "units": [units[name].to_dict() for name in sorted(units)],
            "accounts": account_rows(results),
            "temporary_mutes": temporary,
            "permanent_mutes": permanent,
            "quota": quotas,
        }
