from __future__ import annotations

from fastapi import APIRouter, Request

from core.registry import CacheRegistry
from core.view import iso_or_none, records_payload
from models.contacts import ContactsResponse

router = APIRouter(prefix="/api", tags=["contacts"])

CONTACTS_DATASET = "contacts"


def _registry(request: Request) -> CacheRegistry:
    return request.app.state.registry


@router.get("/contacts", response_model=ContactsResponse)
async def contacts(request: Request) -> ContactsResponse:
    refresher = _registry(request).get_refresher(CONTACTS_DATASET)
    snapshot = await refresher.ensure_loaded()

    # Not loaded yet (or source empty): empty lists with a null timestamp, not an error
    return ContactsResponse(
        cached_at=iso_or_none(snapshot.refreshed_at),
        non_life=records_payload(snapshot.partition("non_life")),
        life=records_payload(snapshot.partition("life")),
    )
