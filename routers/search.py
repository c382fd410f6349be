from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from core.query import run_query
from core.registry import CacheRegistry
from core.view import iso_or_none, records_payload
from models.search import SearchQuery, SearchResponse

log = logging.getLogger("sheetportal.api.search")

router = APIRouter(prefix="/api", tags=["search"])


def _registry(request: Request) -> CacheRegistry:
    return request.app.state.registry


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "message": message},
    )


async def search_dataset(name: str, request: Request, keyword: Optional[str]):
    refresher = _registry(request).get_refresher(name)
    config = refresher.spec.query
    allowed = set(config.filter_params())

    try:
        query = SearchQuery(
            keyword=keyword,
            filters={k: v for k, v in request.query_params.items() if k in allowed},
        )
    except ValidationError as exc:
        return _bad_request(str(exc.errors()[0]["msg"]))

    # Falls back to a guarded refresh only if nothing was ever loaded
    snapshot = await refresher.ensure_loaded()
    try:
        records = run_query(snapshot, config, query.keyword, query.filters)
    except ValueError as exc:
        return _bad_request(str(exc))

    log.info("search dataset=%s keyword=%r filters=%s -> %d", name, query.keyword, query.filters, len(records))
    return SearchResponse(
        dataset=name,
        cached_at=iso_or_none(snapshot.refreshed_at),
        count=len(records),
        records=records_payload(records),
    )


@router.get("/datasets/{name}/search", response_model=SearchResponse)
async def search(name: str, request: Request, keyword: Optional[str] = Query(None)):
    return await search_dataset(name, request, keyword)


@router.get("/search-patients", response_model=SearchResponse)
async def search_patients(request: Request, keyword: Optional[str] = Query(None)):
    return await search_dataset("patients-1", request, keyword)


@router.get("/search-patients-2", response_model=SearchResponse)
async def search_patients_2(request: Request, keyword: Optional[str] = Query(None)):
    return await search_dataset("patients-2", request, keyword)
