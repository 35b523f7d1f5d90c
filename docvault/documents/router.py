"""Documents Router - upload, list, download, signed URL, delete

Endpoints (all token protected):
- POST /documents: Encrypt + store a file for a client (admin only)
- GET /documents: List documents (clients: own only; admins: all or ?owner_id=)
- GET /documents/{document_id}: Stream decrypted bytes (admin or owner)
- GET /documents/{document_id}/url: Signed URL to the ciphertext (admin only)
- DELETE /documents/{document_id}: Remove blob + record (admin only)

Unknown ids and other clients' ids both answer 404 with the same body.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import structlog
from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import StreamingResponse

from docvault import config
from docvault.catalog.models import DocumentFilters
from docvault.documents.services import Services
from docvault.documents.upload import UploadRequest
from docvault.governance.access import Identity
from docvault.governance.auth import check_role

router = APIRouter()
logger = structlog.get_logger()


def get_services(request: Request) -> Services:
    return request.app.state.services


@router.post("")
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    owner_id: Optional[str] = Form(None),
    month: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    user: Identity = Depends(check_role("upload")),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Upload a document on behalf of a client

    Returns:
        {id, name, type, size, uploaded_at}
    """
    data = await file.read()
    upload = UploadRequest(
        owner_id=owner_id,
        month=month,
        year=year,
        filename=file.filename,
        content_type=file.content_type,
        data=data,
    )
    return await services.uploads.upload(user, upload, is_disconnected=request.is_disconnected)


@router.get("")
async def list_documents(
    month: Optional[str] = None,
    year: Optional[str] = None,
    search: Optional[str] = None,
    owner_id: Optional[str] = None,
    user: Identity = Depends(check_role("list")),
    services: Services = Depends(get_services),
) -> List[Dict[str, Any]]:
    """List documents, newest first; month/year/search combine with AND"""
    filters = DocumentFilters(month=month, year=year, name_pattern=search)
    records = await services.retrieval.list(user, filters, owner_id=owner_id)
    return [record.listing() for record in records]


@router.get("/{document_id}")
async def download_document(
    document_id: str,
    user: Identity = Depends(check_role("retrieve")),
    services: Services = Depends(get_services),
):
    """Stream the decrypted document"""
    stream = await services.retrieval.open(user, document_id)
    record = stream.record
    headers = {
        "Content-Disposition": f"attachment; filename*=UTF-8''{quote(record.original_name)}",
        "Content-Length": str(record.size_bytes),
    }
    return StreamingResponse(stream.chunks, media_type=record.mime_type, headers=headers)


@router.get("/{document_id}/url")
async def document_url(
    document_id: str,
    ttl: int = Query(config.SIGNED_URL_TTL, gt=0, le=7 * 24 * 3600),
    user: Identity = Depends(check_role("signed_url")),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return await services.retrieval.signed_url(user, document_id, ttl)


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    user: Identity = Depends(check_role("delete")),
    services: Services = Depends(get_services),
) -> Dict[str, bool]:
    await services.deletion.delete(user, document_id)
    return {"success": True}
