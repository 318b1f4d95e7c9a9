"""Read-only HTTP view over a running monitor."""

import time
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from netwatch import __version__
from netwatch.runtime.host import MonitorHost


def create_app(host: MonitorHost) -> FastAPI:
    app = FastAPI(title="netwatch", version=__version__)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "healthy", "service": "netwatch", "running": host.status()["running"]}

    @app.get("/status")
    async def get_status():
        """Monitor status: executions, bus depth, trigger states, jobs."""
        return host.status()

    @app.get("/diagnostics/{kind}")
    async def get_diagnostics(kind: str):
        """Per-target scheduling state for one probe kind."""
        rows = host.orchestrator.pools.get_diagnostics(kind)
        if not rows:
            return JSONResponse(content={"error": f"Unknown kind: {kind}"}, status_code=404)
        return {"kind": kind, "targets": [row.to_dict() for row in rows]}

    @app.get("/stats/{kind}/{target:path}")
    async def get_stats(kind: str, target: str, window: Optional[float] = None):
        """Window stats for one target; defaults to the summary window."""
        win = float(window) if window is not None and window > 0 else host.summary_window
        res = host.stats.window_latency(kind, target, win, time.time())
        if res is None:
            return JSONResponse(content={"error": f"No samples for {kind}/{target}"}, status_code=404)
        return {"kind": kind, "target": target, "window_sec": win, **res.to_dict()}

    return app
