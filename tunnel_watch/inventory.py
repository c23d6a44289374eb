"""Declared inventory: account groups, unit names and their remediation targets.

One declaration per line::

    alias:accountId,apiToken[,unitName]*[;[GitHub:]owner,repo,pat[,branch]]

The optional segment after ``;`` is the remediation target shared by every unit
named on that line. Full-width ``：，；`` are accepted.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from tunnel_watch.errors import ConfigurationError


_FULL_WIDTH = str.maketrans({"：": ":", "，": ",", "；": ";"})
_TARGET_PREFIX = "github:"


@dataclass(frozen=True)
class RemediationTarget:
    owner: str
    repo: str
    credential: str
    branch: str = "main"

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class AccountGroup:
    account_id: str
    credential: str
    alias: str
    unit_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class DeclaredUnit:
    name: str
    account: AccountGroup
    target: RemediationTarget | None = None


@dataclass(frozen=True)
class Inventory:
    groups: tuple[AccountGroup, ...]
    units: dict[str, DeclaredUnit] = field(default_factory=dict)

    def target_for(self, name: str) -> RemediationTarget | None:
        unit = self.units.get(name)
        return unit.target if unit else None

    def declared_for(self, account_id: str) -> dict[str, DeclaredUnit]:
        """Declared units owned by one account (last declaration of a name wins the ownership)."""
        return {name: unit for name, unit in self.units.items() if unit.account.account_id == account_id}


def normalize_text(text: str) -> str:
    return (text or "").translate(_FULL_WIDTH)


def parse_target(segment: str, *, default_branch: str = "main") -> RemediationTarget | None:
    s = (segment or "").strip()
    if s.lower().startswith(_TARGET_PREFIX):
        s = s[len(_TARGET_PREFIX) :]
    parts = [p.strip() for p in s.split(",")]
    if len(parts) < 3 or not all(parts[:3]):
        return None
    branch = parts[3] if len(parts) > 3 and parts[3] else default_branch
    return RemediationTarget(owner=parts[0], repo=parts[1], credential=parts[2], branch=branch)


def _parse_primary(segment: str, *, lineno: int) -> tuple[str, str, str, list[str]]:
    alias, sep, rest = segment.partition(":")
    alias = alias.strip()
    if not sep or not alias:
        raise ConfigurationError(f"inventory line {lineno}: expected 'alias:accountId,token[,unit...]'")
    parts = [p.strip() for p in rest.split(",")]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ConfigurationError(f"inventory line {lineno} ({alias}): account id and API token are required")
    names = [p for p in parts[2:] if p]
    return alias, parts[0], parts[1], names


def parse_inventory(text: str | None, *, default_branch: str = "main") -> Inventory:
    raw = normalize_text(text or "")
    lines = [(idx, line.strip()) for idx, line in enumerate(raw.splitlines(), start=1)]
    lines = [(idx, line) for idx, line in lines if line and not line.startswith("#")]
    if not lines:
        raise ConfigurationError("inventory is empty; declare at least one account")

    # account_id -> [alias, credential, names]
    accounts: dict[str, list] = {}
    # name -> (account_id, target); later lines overwrite earlier ones
    claims: dict[str, tuple[str, RemediationTarget | None]] = {}

    for lineno, line in lines:
        primary, _sep, secondary = line.partition(";")
        alias, account_id, credential, names = _parse_primary(primary, lineno=lineno)
        target = parse_target(secondary, default_branch=default_branch) if secondary.strip() else None

        entry = accounts.setdefault(account_id, [alias, credential, []])
        for name in names:
            if name not in entry[2]:
                entry[2].append(name)
            claims.pop(name, None)
            claims[name] = (account_id, target)

    groups: dict[str, AccountGroup] = {
        account_id: AccountGroup(
            account_id=account_id,
            credential=credential,
            alias=alias,
            unit_names=tuple(names),
        )
        for account_id, (alias, credential, names) in accounts.items()
    }
    units = {
        name: DeclaredUnit(name=name, account=groups[account_id], target=target)
        for name, (account_id, target) in claims.items()
    }
    return Inventory(groups=tuple(groups.values()), units=units)
