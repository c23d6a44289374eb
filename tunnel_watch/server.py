from __future__ import annotations

import os

import uvicorn

from tunnel_watch.app import create_app
from tunnel_watch.settings import Settings


def serve(settings: Settings, *, host: str | None = None, port: int | None = None) -> None:
    host = host or os.getenv("TUNNEL_WATCH_HOST", "0.0.0.0").strip() or "0.0.0.0"
    port = port or int(os.getenv("TUNNEL_WATCH_PORT", "8080"))
    app = create_app(settings)
    uvicorn.run(app, host=host, port=port, log_level="info")


def main() -> None:
    serve(Settings())


if __name__ == "__main__":
    main()
