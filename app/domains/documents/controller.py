"""Document upload API controller."""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.dependencies import get_current_user, get_db, get_retriever, validate_token
from app.domains.chat.retriever import VectorRetriever
from app.domains.documents.service import DocumentService
from app.exceptions.base import BaseAppException
from app.exceptions.document import DocumentTooLargeError
from app.schemas.base import ResponseSchema
from models.user import User


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/documents",
    tags=["documents"],
    dependencies=[Depends(validate_token)],
)


@router.post("/upload", response_model=ResponseSchema, status_code=201)
async def upload_document(
    _request: Request,
    file: UploadFile = File(..., description="PDF document"),
    chat_id: UUID | None = Form(None, description="Chat the document belongs to"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    retriever: VectorRetriever = Depends(get_retriever),
):
    """Upload a PDF and index it for retrieval in one chat.

    Returns:
        Chat id, page count and number of indexed chunks
    """
    try:
        # One byte past the limit is enough to reject
        content = await file.read(settings.max_upload_size + 1)
        if len(content) > settings.max_upload_size:
            raise DocumentTooLargeError()

        service = DocumentService(db, retriever)
        result = await service.ingest(
            user_id=current_user.id,
            file_name=file.filename or "",
            content=content,
            chat_id=chat_id,
        )

        return ResponseSchema(
            status="success",
            message="Document uploaded successfully",
            data=result.model_dump(mode="json"),
        )

    except BaseAppException:
        raise
    except Exception as e:
        logger.error(f"Error uploading document: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ResponseSchema(
                status="error",
                message="Failed to upload document",
                data=None,
            ).model_dump(),
        )
    finally:
        await file.close()
