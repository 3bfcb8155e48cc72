import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException

from .config import Settings, settings as default_settings
from .context import SyncContext
from .exceptions import PayloadError
from .logging_config import configure_logging
from .rows import decode_row
from .scheduler import SyncScheduler


def create_app(
    settings: Optional[Settings] = None,
    context: Optional[SyncContext] = None,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.log_json)
        sync_context = context or SyncContext.from_settings(settings)
        scheduler = SyncScheduler(sync_context)
        app.state.context = sync_context
        app.state.scheduler = scheduler
        task = asyncio.create_task(scheduler.run_forever())
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            await sync_context.aclose()

    app = FastAPI(
        title="DB Sync Service",
        version="0.1.0",
        description="Mirrors relational tables or views into a key-value cache on a fixed cadence.",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/sync/status")
    async def sync_status() -> dict:
        scheduler: SyncScheduler = app.state.scheduler
        return {
            "state": scheduler.state.value,
            "mode": settings.sync_mode.value,
            "last_run": scheduler.last_result,
        }

    @app.get("/cache/rows/{key:path}")
    async def cached_row(key: str) -> dict:
        payload = await app.state.context.cache.get(key)
        if payload is None:
            raise HTTPException(status_code=404, detail=f"No cached row for '{key}'")
        try:
            row = decode_row(payload)
        except PayloadError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"key": key, "row": row}

    return app


app = create_app()
