from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from tunnel_watch.aggregator import AccountResult
from tunnel_watch.cloudflare import ObservedUnit
from tunnel_watch.inventory import AccountGroup, DeclaredUnit, Inventory, RemediationTarget


class Classification(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    MONITORING_ERROR = "monitoring-error"
    NOT_FOUND = "not-found"
    UNMONITORED = "unmonitored"


@dataclass(frozen=True)
class ReconciledUnit:
    account: AccountGroup
    classification: Classification
    declared: DeclaredUnit | None = None
    observed: ObservedUnit | None = None
    error: str | None = None

    @property
    def name(self) -> str:
        if self.observed is not None:
            return self.observed.name
        assert self.declared is not None
        return self.declared.name

    @property
    def alias(self) -> str:
        return self.account.alias

    @property
    def status(self) -> str:
        if self.observed is not None:
            return self.observed.status
        return self.classification.value

    @property
    def target(self) -> RemediationTarget | None:
        return self.declared.target if self.declared is not None else None

    @property
    def healthy(self) -> bool:
        return self.observed is not None and self.observed.healthy

    @property
    def is_down(self) -> bool:
        # Live but not healthy, declared or not.
        return self.observed is not None and not self.observed.healthy

    @classmethod
    def from_declared(cls, declared: DeclaredUnit) -> ReconciledUnit:
        """A unit known only from the inventory, used by manual entry points that skip the live fetch."""
        return cls(account=declared.account, classification=Classification.NOT_FOUND, declared=declared)

    def to_dict(self) -> dict[str, Any]:
        target = self.target
        return {
            "name": self.name,
            "account": self.alias,
            "classification": self.classification.value,
            "status": self.status,
            "id": self.observed.unit_id if self.observed is not None else None,
            "declared": self.declared is not None,
            "target": target.slug if target is not None else None,
            "error": self.error,
        }


def _classify(observed: ObservedUnit, declared: DeclaredUnit | None) -> Classification:
    if declared is None:
        return Classification.UNMONITORED
    return Classification.HEALTHY if observed.healthy else Classification.UNHEALTHY


def reconcile(inventory: Inventory, results: Iterable[AccountResult]) -> dict[str, ReconciledUnit]:
    """Merge declared inventory with live observations, keyed by unit name.

    Pure function of its inputs. Declared units of a failed account come back as
    monitoring-error; declared units missing from a successful listing come back
    as not-found. A live name seen twice keeps the last observation.
    """
    out: dict[str, ReconciledUnit] = {}
    for result in results:
        account = result.group
        pending = inventory.declared_for(account.account_id)

        if not result.ok:
            for declared in pending.values():
                _put_unobserved(
                    out,
                    ReconciledUnit(
                        account=account,
                        classification=Classification.MONITORING_ERROR,
                        declared=declared,
                        error=result.error,
                    ),
                )
            continue

        for observed in result.units:
            declared = pending.pop(observed.name, None)
            if declared is None:
                # Declared under another account (last line wins) or already matched in this listing.
                declared = inventory.units.get(observed.name)
            out[observed.name] = ReconciledUnit(
                account=account,
                classification=_classify(observed, declared),
                declared=declared,
                observed=observed,
            )

        for declared in pending.values():
            _put_unobserved(
                out,
                ReconciledUnit(account=account, classification=Classification.NOT_FOUND, declared=declared),
            )
    return out


def _put_unobserved(out: dict[str, ReconciledUnit], unit: ReconciledUnit) -> None:
    # A live observation of the same name (seen under another account) outranks a placeholder.
    prev = out.get(unit.name)
    if prev is not None and prev.observed is not None:
        return
    out[unit.name] = unit


def summarize(units: Mapping[str, ReconciledUnit]) -> dict[str, int]:
    counts = {c.value: 0 for c in Classification}
    for unit in units.values():
        counts[unit.classification.value] += 1
    observed = [u for u in units.values() if u.observed is not None]
    counts["total"] = len(observed)
    counts["healthy_total"] = sum(1 for u in observed if u.healthy)
    return counts
