from __future__ import annotations

# =============================================================================
# sheetportal (FastAPI)
#
# Responsibilities:
# - Declare the dataset catalogue (core/config.build_datasets)
# - Load every dataset once before serving, then refresh on timers
# - Serve reads from in-memory snapshots (/api/datasets/*, /api/contacts)
# - Expose cache status and manual refresh (/api/datasets)
# =============================================================================

# ---- stdlib ----
import logging
from contextlib import asynccontextmanager
from typing import Optional

# ---- web ----
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

# ---- local ----
from core.config import Settings, build_datasets
from core.errors import RegistryMiss
from core.registry import CacheRegistry
from routers import admin, contacts, search

log = logging.getLogger("sheetportal")

# =============================================================================
# Registry
# =============================================================================

def build_registry(settings: Settings) -> CacheRegistry:
    registry = CacheRegistry()
    for spec in build_datasets(settings):
        registry.register(spec)
    return registry


# =============================================================================
# App setup
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[CacheRegistry] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    registry = registry if registry is not None else build_registry(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Readiness waits for the first load; a failed required dataset aborts startup
        outcomes = await registry.start()
        for name, outcome in outcomes.items():
            log.info("initial load dataset=%s status=%s records=%d",
                     name, outcome.status, outcome.records)
        try:
            yield
        finally:
            await registry.stop()

    app = FastAPI(title="sheetportal", version="0.1", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry

    @app.exception_handler(RegistryMiss)
    async def registry_miss_handler(request: Request, exc: RegistryMiss) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"success": False, "message": str(exc)},
        )

    app.include_router(search.router)
    app.include_router(contacts.router)
    app.include_router(admin.router)
    return app


# =============================================================================
# Entrypoint
# =============================================================================

def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
