"""Document processing routes."""
from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from ...models.documents import AuthUser, RequestContext
from ...pipeline import DocumentProcessor
from ..auth import get_current_user

router = APIRouter()


def get_processor(request: Request) -> DocumentProcessor:
    return request.app.state.processor


def request_context(request: Request) -> RequestContext:
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = forwarded.split(",")[0].strip() if forwarded else None
    if not ip_address:
        ip_address = request.client.host if request.client else "unknown"
    return RequestContext(
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent", "unknown"),
    )


@router.post("/process")
async def process_document(
    request: Request,
    user: AuthUser | None = Depends(get_current_user),
    processor: DocumentProcessor = Depends(get_processor),
):
    """Extract VAT data from a stored document and record the result.

    The body is read raw so malformed JSON gets the same error envelope as
    every other failure instead of FastAPI's validation response.
    """
    body = await request.body()
    result = await processor.process_raw(body, user, request_context(request))
    return JSONResponse(status_code=result.status_code, content=result.body)
