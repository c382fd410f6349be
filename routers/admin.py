from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Request

from core.registry import CacheRegistry
from core.view import build_view, view_dict

router = APIRouter(prefix="/api", tags=["admin"])


def _registry(request: Request) -> CacheRegistry:
    return request.app.state.registry


@router.get("/datasets")
def api_datasets(request: Request) -> dict:
    registry = _registry(request)
    views = [view_dict(build_view(refresher)) for _, refresher in registry.items()]
    return {"success": True, "count": len(views), "datasets": views}


@router.get("/datasets/{name}")
def api_dataset(name: str, request: Request) -> dict:
    refresher = _registry(request).get_refresher(name)
    return {"success": True, "dataset": view_dict(build_view(refresher))}


@router.post("/datasets/{name}/refresh")
async def refresh(name: str, request: Request) -> dict:
    refresher = _registry(request).get_refresher(name)
    outcome = await refresher.refresh_once()
    return {
        "success": outcome.status != "failed",
        "outcome": asdict(outcome),
        "dataset": view_dict(build_view(refresher)),
    }
