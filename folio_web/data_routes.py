"""
FastAPI routes for site data.

Prefix: /api/data

Reads are public, like the site itself. Every write needs an editor or
admin session; a batch touching accounts needs an admin.
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends

from folio.auth.models import SessionUser
from folio.batch.models import BatchRequest

from .auth_deps import require_editor
from .services import Services, get_services

router = APIRouter(prefix="/api/data", tags=["data"])


@router.get("/content")
def get_content(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return services.documents.get_content()


@router.put("/content")
def put_content(
    patch: Dict[str, Any] = Body(...),
    acting: SessionUser = Depends(require_editor),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Shallow-merge ``patch`` into the content document and commit it."""
    return services.documents.put_content(patch, acting)


@router.post("/batch")
def submit_batch(
    request: BatchRequest,
    acting: SessionUser = Depends(require_editor),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """
    Apply every pending change in one commit.

    Response:
        {"success": true, "committed": bool, "message": "...",
         "commitSha": "..." | null, "results": {<section>: {...}}}
    """
    result = services.batches.submit(request, acting)
    return result.model_dump(by_alias=True)


@router.get("/{collection}")
def list_collection(collection: str, services: Services = Depends(get_services)) -> List[Dict[str, Any]]:
    return services.documents.list_collection(collection)
