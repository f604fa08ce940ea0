"""Chat API controller: streamed turns and conversation management."""

import logging
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Path, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.dependencies import get_current_user, get_db, get_retriever, get_turn_orchestrator, validate_token
from app.domains.chat.events import encode_event
from app.domains.chat.orchestrator import TurnOrchestrator, TurnStream
from app.domains.chat.retriever import VectorRetriever
from app.domains.chat.service import ChatService
from app.exceptions.base import BaseAppException
from app.schemas.base import ResponseSchema
from app.schemas.chat import ChatStreamRequest, ChatTitleUpdate
from app.shared.pagination import PaginationParams
from models.user import User


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/chat",
    tags=["chat"],
    dependencies=[Depends(validate_token)],
)


def _error_response(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ResponseSchema(status="error", message=message, data=None).model_dump(),
    )


async def _encode_stream(turn_stream: TurnStream):
    try:
        async for event in turn_stream:
            yield encode_event(event, settings.stream_end_sentinel)
    finally:
        # Also runs when the client disconnects and the response task is cancelled
        await turn_stream.aclose()


@router.post("/stream")
async def stream_chat(
    _request: Request,
    stream_request: ChatStreamRequest = Body(...),
    current_user: User = Depends(get_current_user),
    orchestrator: TurnOrchestrator = Depends(get_turn_orchestrator),
):
    """Answer the last user message, streaming plain-text deltas.

    The stream ends with the configured sentinel. Malformed requests, unknown
    chats and concurrent turns are rejected with a JSON error before any
    bytes are streamed.

    Returns:
        ``text/plain`` streaming response; ``X-Chat-ID`` carries the chat id
    """
    turn_stream = await orchestrator.start_turn(
        chat_id=stream_request.chat_id,
        user_id=current_user.id,
        messages=stream_request.messages,
    )

    return StreamingResponse(
        _encode_stream(turn_stream),
        media_type="text/plain; charset=utf-8",
        headers={"X-Chat-ID": str(turn_stream.chat_id), "Cache-Control": "no-cache"},
    )


@router.get("/conversations", response_model=ResponseSchema)
async def list_chats(
    _request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Page size"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the current user's chats, most recently updated first."""
    try:
        service = ChatService(db)
        result = await service.list_chats(current_user.id, PaginationParams(page=page, size=size))

        return ResponseSchema(
            status="success",
            message="Chats retrieved successfully",
            data=result.model_dump(mode="json"),
        )

    except BaseAppException:
        raise
    except Exception as e:
        logger.error(f"Error retrieving chats: {str(e)}")
        return _error_response("Failed to retrieve chats")


@router.get("/conversations/search", response_model=ResponseSchema)
async def search_chats(
    _request: Request,
    q: str = Query(..., min_length=1, max_length=255, description="Text contained in the title"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Search the current user's chats by title."""
    try:
        service = ChatService(db)
        chats = await service.search_chats(current_user.id, q)

        return ResponseSchema(
            status="success",
            message=f"Found {len(chats)} chats",
            data={"chats": [chat.model_dump(mode="json") for chat in chats], "total": len(chats)},
        )

    except BaseAppException:
        raise
    except Exception as e:
        logger.error(f"Error searching chats: {str(e)}")
        return _error_response("Failed to search chats")


@router.get("/conversations/recent", response_model=ResponseSchema)
async def recent_chats(
    _request: Request,
    limit: int = Query(10, ge=1, le=50, description="Number of chats"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Most recently updated chats of the current user."""
    try:
        service = ChatService(db)
        chats = await service.recent_chats(current_user.id, limit=limit)

        return ResponseSchema(
            status="success",
            message="Recent chats retrieved successfully",
            data={"chats": [chat.model_dump(mode="json") for chat in chats]},
        )

    except BaseAppException:
        raise
    except Exception as e:
        logger.error(f"Error retrieving recent chats: {str(e)}")
        return _error_response("Failed to retrieve chats")


@router.get("/conversations/{chat_id}", response_model=ResponseSchema)
async def get_chat(
    _request: Request,
    chat_id: UUID = Path(..., description="Chat ID"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get a chat with all of its messages."""
    try:
        service = ChatService(db)
        result = await service.get_chat(chat_id, current_user.id)

        return ResponseSchema(
            status="success",
            message="Chat retrieved successfully",
            data=result.model_dump(mode="json"),
        )

    except BaseAppException:
        raise
    except Exception as e:
        logger.error(f"Error retrieving chat: {str(e)}")
        return _error_response("Failed to retrieve chat")


@router.patch("/conversations/{chat_id}", response_model=ResponseSchema)
async def update_chat(
    _request: Request,
    chat_id: UUID = Path(..., description="Chat ID"),
    update: ChatTitleUpdate = Body(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Rename a chat."""
    try:
        service = ChatService(db)
        result = await service.update_chat(chat_id, current_user.id, title=update.title, metadata=update.metadata)

        return ResponseSchema(
            status="success",
            message="Chat updated successfully",
            data=result.model_dump(mode="json"),
        )

    except BaseAppException:
        raise
    except Exception as e:
        logger.error(f"Error updating chat: {str(e)}")
        return _error_response("Failed to update chat")


@router.delete("/conversations/{chat_id}", response_model=ResponseSchema)
async def delete_chat(
    _request: Request,
    chat_id: UUID = Path(..., description="Chat ID"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    retriever: VectorRetriever = Depends(get_retriever),
):
    """Delete a chat and its messages."""
    try:
        service = ChatService(db, retriever=retriever)
        await service.delete_chat(chat_id, current_user.id)

        return ResponseSchema(status="success", message="Chat deleted successfully", data=None)

    except BaseAppException:
        raise
    except Exception as e:
        logger.error(f"Error deleting chat: {str(e)}")
        return _error_response("Failed to delete chat")


@router.delete("/conversations", response_model=ResponseSchema)
async def clear_chats(
    _request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    retriever: VectorRetriever = Depends(get_retriever),
):
    """Delete every chat of the current user."""
    try:
        service = ChatService(db, retriever=retriever)
        removed = await service.clear_chats(current_user.id)

        return ResponseSchema(
            status="success",
            message="Chats cleared successfully",
            data={"deleted": removed},
        )

    except BaseAppException:
        raise
    except Exception as e:
        logger.error(f"Error clearing chats: {str(e)}")
        return _error_response("Failed to clear chats")


@router.post("/conversations/{chat_id}/share", response_model=ResponseSchema)
async def share_chat(
    _request: Request,
    chat_id: UUID = Path(..., description="Chat ID"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Make a chat readable through its share path."""
    try:
        service = ChatService(db)
        result = await service.share_chat(chat_id, current_user.id)

        return ResponseSchema(
            status="success",
            message="Chat shared successfully",
            data=result.model_dump(mode="json"),
        )

    except BaseAppException:
        raise
    except Exception as e:
        logger.error(f"Error sharing chat: {str(e)}")
        return _error_response("Failed to share chat")


@router.delete("/conversations/{chat_id}/share", response_model=ResponseSchema)
async def unshare_chat(
    _request: Request,
    chat_id: UUID = Path(..., description="Chat ID"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Stop sharing a chat."""
    try:
        service = ChatService(db)
        result = await service.unshare_chat(chat_id, current_user.id)

        return ResponseSchema(
            status="success",
            message="Chat unshared successfully",
            data=result.model_dump(mode="json"),
        )

    except BaseAppException:
        raise
    except Exception as e:
        logger.error(f"Error unsharing chat: {str(e)}")
        return _error_response("Failed to unshare chat")


@router.get("/shared/{chat_id}", response_model=ResponseSchema)
async def get_shared_chat(
    _request: Request,
    chat_id: UUID = Path(..., description="Chat ID"),
    db: AsyncSession = Depends(get_db),
):
    """Read a shared chat. Any authenticated user may read it."""
    try:
        service = ChatService(db)
        result = await service.get_shared_chat(chat_id)

        return ResponseSchema(
            status="success",
            message="Shared chat retrieved successfully",
            data=result.model_dump(mode="json"),
        )

    except BaseAppException:
        raise
    except Exception as e:
        logger.error(f"Error retrieving shared chat: {str(e)}")
        return _error_response("Failed to retrieve shared chat")
