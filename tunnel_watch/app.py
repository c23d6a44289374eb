from __future__ import annotations

import hmac
from typing import Any

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request

from tunnel_watch.cycle import TunnelWatch
from tunnel_watch.errors import AuthorizationError, ConfigurationError
from tunnel_watch.kv import KeyValueStore
from tunnel_watch.scheduler import CycleScheduler
from tunnel_watch.schema import ActionResponse, MuteResponse
from tunnel_watch.settings import Settings
from tunnel_watch.webhook import SECRET_HEADER, WebhookController


logger = structlog.get_logger(__name__)

_MUTE_ACTIONS = {"mute", "unmute"}


def _auth_header_token(req: Request) -> str:
    raw = req.headers.get("authorization") or ""
    if not raw:
        return ""
    parts = raw.split(None, 1)
    if len(parts) != 2:
        return ""
    scheme, rest = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer":
        return ""
    return rest


def get_settings(req: Request) -> Settings:
    settings: Any = getattr(req.app.state, "settings", None)
    if not isinstance(settings, Settings):
        raise RuntimeError("Settings not configured")
    return settings


def get_watch(req: Request) -> TunnelWatch:
    watch: Any = getattr(req.app.state, "watch", None)
    if not isinstance(watch, TunnelWatch):
        raise RuntimeError("TunnelWatch not started")
    return watch


def require_admin(req: Request, settings: Settings = Depends(get_settings)) -> None:
    if not settings.admin_token:
        return
    token = _auth_header_token(req)
    if not token:
        raise HTTPException(status_code=401, detail="missing_bearer_token")
    if not hmac.compare_digest(token.strip(), settings.admin_token.strip()):
        raise HTTPException(status_code=403, detail="invalid_admin_token")


def _config_error(exc: ConfigurationError) -> HTTPException:
    logger.error("configuration_error", error=str(exc))
    return HTTPException(status_code=500, detail=f"configuration_error: {exc}")


def _check_mute_action(action: str) -> str:
    s = (action or "").strip().lower()
    if s not in _MUTE_ACTIONS:
        raise HTTPException(status_code=400, detail="action must be 'mute' or 'unmute'")
    return s


def create_app(
    settings: Settings | None = None,
    *,
    kv: KeyValueStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    app = FastAPI(title="Tunnel Watch", version="0.1.0")
    app.state.settings = settings or Settings()
    app.state.watch = None
    app.state.scheduler = None

    @app.on_event("startup")
    async def _startup() -> None:
        settings2: Settings = app.state.settings
        app.state.owns_http_client = http_client is None
        app.state.http_client = http_client or httpx.AsyncClient()
        watch = TunnelWatch.from_settings(settings2, app.state.http_client, kv=kv)
        app.state.watch = watch
        if settings2.interval_seconds > 0:
            scheduler = CycleScheduler(watch, interval_seconds=settings2.interval_seconds)
            scheduler.start()
            app.state.scheduler = scheduler
        logger.info(
            "app_started",
            telegram=settings2.telegram_enabled,
            interval_seconds=settings2.interval_seconds,
        )

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown()
        if getattr(app.state, "owns_http_client", False):
            await app.state.http_client.aclose()

    @app.get("/healthz")
    def healthz() -> dict[str, Any]:
        return {"ok": True}

    @app.get("/")
    async def state(watch: TunnelWatch = Depends(get_watch)) -> dict[str, Any]:
        try:
            return await watch.snapshot()
        except ConfigurationError as exc:
            raise _config_error(exc) from exc

    @app.get("/trigger", response_model=ActionResponse, dependencies=[Depends(require_admin)])
    async def trigger(
        name: str = Query(..., min_length=1, max_length=200),
        watch: TunnelWatch = Depends(get_watch),
    ) -> ActionResponse:
        try:
            result = await watch.trigger(name)
        except ConfigurationError as exc:
            raise _config_error(exc) from exc
        return ActionResponse(success=result.success, message=result.message, outcome=result.outcome.value)

    @app.get("/mute", response_model=MuteResponse, dependencies=[Depends(require_admin)])
    async def temporary_mute(
        name: str = Query(..., min_length=1, max_length=200),
        action: str = Query("mute"),
        watch: TunnelWatch = Depends(get_watch),
    ) -> MuteResponse:
        action = _check_mute_action(action)
        if action == "mute":
            changed = await watch.policy.set_temporary_mute(name)
            message = f"{name} muted" if changed else f"{name} mute extended"
        else:
            changed = await watch.policy.clear_temporary_mute(name)
            message = f"{name} unmuted" if changed else f"{name} was not muted"
        return MuteResponse(success=True, message=message, name=name, muted=action == "mute", changed=changed)

    @app.get("/permanent-mute", response_model=MuteResponse, dependencies=[Depends(require_admin)])
    async def permanent_mute(
        name: str = Query(..., min_length=1, max_length=200),
        action: str = Query("mute"),
        watch: TunnelWatch = Depends(get_watch),
    ) -> MuteResponse:
        action = _check_mute_action(action)
        if action == "mute":
            changed = await watch.policy.set_permanent_mute(name)
            message = f"{name} permanently muted" if changed else f"{name} already permanently muted"
        else:
            changed = await watch.policy.clear_permanent_mute(name)
            message = f"{name} permanent mute removed" if changed else f"{name} was not permanently muted"
        return MuteResponse(success=True, message=message, name=name, muted=action == "mute", changed=changed)

    @app.post("/interactive-callback")
    async def interactive_callback(
        req: Request,
        settings2: Settings = Depends(get_settings),
        watch: TunnelWatch = Depends(get_watch),
    ) -> dict[str, Any]:
        controller = WebhookController(watch, chat_id=settings2.telegram_chat_id, secret=settings2.webhook_secret)
        try:
            controller.check_secret(req.headers.get(SECRET_HEADER))
        except AuthorizationError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.reason) from exc
        try:
            payload = await req.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="invalid_json") from exc
        try:
            outcome = await controller.handle(payload, secret_header=req.headers.get(SECRET_HEADER))
        except AuthorizationError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.reason) from exc
        except ConfigurationError as exc:
            raise _config_error(exc) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return outcome.to_dict()

    return app
