from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from tunnel_watch.errors import RemediationDispatchError
from tunnel_watch.inventory import RemediationTarget


DEFAULT_API_BASE = "https://api.github.com"
USER_AGENT = "tunnel-watch"


class RemediationClient(Protocol):
    async def trigger(self, target: RemediationTarget) -> int:
        """Start remediation for `target`; return the accepted status or raise RemediationDispatchError."""
        ...


def workflow_dispatch_url(api_base: str, target: RemediationTarget, workflow_file: str) -> str:
    return f"{api_base.rstrip('/')}/repos/{target.owner}/{target.repo}/actions/workflows/{workflow_file}/dispatches"


def _redact(text: str, secret: str) -> str:
    return text.replace(secret, "<redacted>") if secret else text


@dataclass
class GitHubWorkflowClient:
    """Fires a workflow_dispatch event. Acceptance (HTTP 204) is the only success signal."""

    http_client: httpx.AsyncClient
    workflow_file: str = "main.yml"
    api_base: str = DEFAULT_API_BASE
    timeout: float = 15.0

    async def trigger(self, target: RemediationTarget) -> int:
        url = workflow_dispatch_url(self.api_base, target, self.workflow_file)
        try:
            resp = await self.http_client.post(
                url,
                headers={
                    "Authorization": f"token {target.credential}",
                    "Accept": "application/vnd.github.v3+json",
                    "User-Agent": USER_AGENT,
                },
                json={"ref": target.branch},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise RemediationDispatchError("network error: request timed out") from exc
        except httpx.HTTPError as exc:
            msg = _redact(f"network error: {type(exc).__name__}: {exc}", target.credential)
            raise RemediationDispatchError(msg) from exc

        if resp.status_code == 204:
            return resp.status_code
        body = _redact((resp.text or "").strip(), target.credential)[:300]
        msg = f"GitHub error {resp.status_code}"
        if body:
            msg = f"{msg}: {body}"
        raise RemediationDispatchError(msg, status_code=resp.status_code)
