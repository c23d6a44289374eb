from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

import structlog

from tunnel_watch.cloudflare import ObservedUnit
from tunnel_watch.errors import AccountFetchError
from tunnel_watch.inventory import AccountGroup


logger = structlog.get_logger(__name__)

FetchUnits = Callable[[AccountGroup], Awaitable[list[ObservedUnit]]]


@dataclass(frozen=True)
class AccountResult:
    group: AccountGroup
    units: tuple[ObservedUnit, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _fetch_one(
    group: AccountGroup,
    fetch: FetchUnits,
    *,
    semaphore: asyncio.Semaphore,
    timeout: float,
) -> AccountResult:
    async with semaphore:
        try:
            units = await asyncio.wait_for(fetch(group), timeout=timeout)
        except asyncio.TimeoutError:
            error = f"timed out after {timeout:g}s"
        except AccountFetchError as exc:
            error = exc.message
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
        else:
            return AccountResult(group=group, units=tuple(units))

    logger.warning("account_fetch_failed", account=group.alias, account_id=group.account_id, error=error)
    return AccountResult(group=group, error=error)


async def aggregate(
    groups: Sequence[AccountGroup],
    fetch: FetchUnits,
    *,
    max_concurrent: int = 5,
    timeout: float = 8.0,
) -> list[AccountResult]:
    """Fetch the live units of every account, isolating per-account failures.

    Returns one result per input group, in input order. A timeout or error on one
    account never cancels or fails its siblings.
    """
    semaphore = asyncio.Semaphore(max(1, int(max_concurrent)))
    results = await asyncio.gather(
        *(_fetch_one(group, fetch, semaphore=semaphore, timeout=timeout) for group in groups)
    )
    logger.info(
        "accounts_aggregated",
        accounts=len(results),
        failed=sum(1 for r in results if not r.ok),
    )
    return list(results)
