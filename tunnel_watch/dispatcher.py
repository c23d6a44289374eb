from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import structlog

from tunnel_watch.errors import RemediationDispatchError
from tunnel_watch.github import RemediationClient
from tunnel_watch.policy import PolicyStore
from tunnel_watch.reconciler import ReconciledUnit


logger = structlog.get_logger(__name__)


class DispatchMode(str, Enum):
    NORMAL = "normal"
    # Manual or button-triggered: ignores mute, quota and health.
    FORCED = "forced"


class DispatchOutcome(str, Enum):
    TRIGGERED = "triggered"
    FAILED = "failed"
    NO_TARGET = "no-target"
    NOT_NEEDED = "not-needed"
    MUTED = "muted"
    QUOTA_EXHAUSTED = "quota-exhausted"


@dataclass(frozen=True)
class DispatchResult:
    unit: str
    outcome: DispatchOutcome
    message: str
    status_code: int | None = None
    quota_count: int | None = None

    @property
    def attempted(self) -> bool:
        return self.outcome in {DispatchOutcome.TRIGGERED, DispatchOutcome.FAILED}

    @property
    def success(self) -> bool:
        return self.outcome is DispatchOutcome.TRIGGERED


class ActionDispatcher:
    def __init__(
        self,
        policy: PolicyStore,
        client: RemediationClient,
        *,
        muted_units_remediate: bool = False,
    ) -> None:
        self.policy = policy
        self.client = client
        self.muted_units_remediate = muted_units_remediate

    async def dispatch(self, unit: ReconciledUnit, mode: DispatchMode = DispatchMode.NORMAL) -> DispatchResult:
        name = unit.name
        target = unit.target
        if target is None:
            return DispatchResult(name, DispatchOutcome.NO_TARGET, "no remediation configured")

        quota_count: int | None = None
        if mode is not DispatchMode.FORCED:
            if unit.healthy:
                return DispatchResult(name, DispatchOutcome.NOT_NEEDED, "unit is healthy")
            if not self.muted_units_remediate and await self.policy.is_effectively_muted(name):
                return DispatchResult(name, DispatchOutcome.MUTED, "unit is muted")
            decision = await self.policy.consume_quota(name)
            if not decision.allowed:
                return DispatchResult(
                    name,
                    DispatchOutcome.QUOTA_EXHAUSTED,
                    f"daily limit reached ({decision.count_after}/{self.policy.daily_cap})",
                    quota_count=decision.count_after,
                )
            quota_count = decision.count_after

        try:
            status_code = await self.client.trigger(target)
        except RemediationDispatchError as exc:
            logger.warning(
                "remediation_failed",
                unit=name,
                mode=mode.value,
                repo=target.slug,
                status_code=exc.status_code,
                error=exc.message,
            )
            return DispatchResult(
                name,
                DispatchOutcome.FAILED,
                exc.message,
                status_code=exc.status_code,
                quota_count=quota_count,
            )

        logger.info("remediation_triggered", unit=name, mode=mode.value, repo=target.slug, quota_count=quota_count)
        if quota_count is None:
            message = f"remediation workflow dispatched to {target.slug}"
        else:
            message = f"remediation workflow dispatched to {target.slug} ({quota_count}/{self.policy.daily_cap} today)"
        return DispatchResult(
            name,
            DispatchOutcome.TRIGGERED,
            message,
            status_code=status_code,
            quota_count=quota_count,
        )
