"""HTTP server that runs the sync scheduler in the background (container friendly)."""

import asyncio
from typing import Optional

from fastapi import FastAPI, HTTPException, Response

from .config import Settings, load_settings
from .scheduler import SchedulerLoop
from .sync_engine import SyncEngine


class SyncRuntime:
    """Owns the engine and the scheduler for the lifetime of the app."""

    def __init__(self, settings: Settings, engine: Optional[SyncEngine] = None):
        self.settings = settings
        self.engine = engine or SyncEngine.from_settings(settings)
        self.scheduler = SchedulerLoop(
            self.engine.sync_calendars,
            interval_seconds=settings.sync_config.sync_interval_minutes * 60,
        )
        self.task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        await self.engine.initialize()
        self.task = asyncio.create_task(self.scheduler.run())

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        if self.task:
            await asyncio.wait([self.task], timeout=5)


def create_app(runtime: Optional[SyncRuntime] = None) -> FastAPI:
    app = FastAPI(title="calmirror", version="1.0")

    @app.on_event("startup")
    async def on_startup():
        rt = runtime or SyncRuntime(load_settings())
        app.state.runtime = rt
        await rt.start()

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.runtime.shutdown()

    @app.get("/health")
    async def health():
        rt: SyncRuntime = app.state.runtime
        scheduler = rt.scheduler
        report = scheduler.last_result
        return {
            "ok": scheduler.last_error is None and not (report is not None and report.aborted),
            "state": scheduler.state.value,
            "last_sync": scheduler.last_run_at.isoformat() if scheduler.last_run_at else None,
            "last_error": scheduler.last_error or (report.error if report is not None else None),
            "runs": scheduler.runs_started,
            "failed_runs": scheduler.runs_failed,
            "dropped_ticks": scheduler.dropped_ticks,
            "interval_seconds": scheduler.interval_seconds,
            "targets": [
                {"name": t.target, "ok": t.succeeded, "mappings": t.mappings, "failed": t.failed}
                for t in (report.targets if report is not None else [])
            ],
        }

    @app.post("/sync")
    async def trigger_sync():
        rt: SyncRuntime = app.state.runtime
        if not rt.scheduler.trigger():
            raise HTTPException(status_code=409, detail="sync already running")
        return Response(status_code=202)

    return app
