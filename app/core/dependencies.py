# app/core/dependencies.py
import logging
from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.security import ClerkAuthenticator
from app.database import get_db, get_session_factory
from app.domains.chat.condenser import QuestionCondenser
from app.domains.chat.generator import AnswerGenerator
from app.domains.chat.llm import create_gemini_model
from app.domains.chat.orchestrator import InFlightRegistry, TurnOrchestrator
from app.domains.chat.retriever import VectorRetriever
from app.domains.user.service import UserService
from models import User

logger = logging.getLogger(__name__)

security = HTTPBearer()
auth = ClerkAuthenticator()


async def validate_token(token: str = Depends(security)) -> dict:
    """Validate and decode the Clerk session token.

    Returns:
        dict: Decoded token payload

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        if not token or not token.credentials:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication token is required",
                headers={"WWW-Authenticate": "Bearer"},
            )

        payload = await auth.verify_token(token.credentials)

        if not payload:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return payload

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Token validation error: %s", str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def get_current_user(
    request: Request,
    payload: dict = Depends(validate_token),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the local user for the authenticated Clerk identity.

    Raises:
        HTTPException: If the payload has no subject or the user is inactive
    """
    try:
        clerk_user_id = payload.get("sub")

        if not clerk_user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token payload - missing user ID",
            )

        user_service = UserService(db)
        user = await user_service.get_or_create_user(clerk_user_id, payload)

        if not user.is_active:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

        # For request logging
        request.state.user_id = user.id
        request.state.clerk_user_id = clerk_user_id

        return user

    except HTTPException:
        raise
    except Exception as e:
        logger.error("User authentication error: %s", str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication service error",
        ) from e


# Chat pipeline collaborators. Each one is a separate dependency so tests
# can override it through ``app.dependency_overrides``.


@lru_cache
def get_gemini_model():
    return create_gemini_model()


@lru_cache
def get_retriever() -> VectorRetriever:
    return VectorRetriever()


def get_condenser() -> QuestionCondenser:
    return QuestionCondenser(get_gemini_model())


def get_generator() -> AnswerGenerator:
    return AnswerGenerator(get_gemini_model(), model_name=settings.gemini_model)


_turn_registry = InFlightRegistry()


def get_turn_registry() -> InFlightRegistry:
    return _turn_registry


def get_turn_orchestrator(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    condenser: QuestionCondenser = Depends(get_condenser),
    retriever: VectorRetriever = Depends(get_retriever),
    generator: AnswerGenerator = Depends(get_generator),
    registry: InFlightRegistry = Depends(get_turn_registry),
) -> TurnOrchestrator:
    return TurnOrchestrator(
        session_factory=session_factory,
        condenser=condenser,
        retriever=retriever,
        generator=generator,
        registry=registry,
    )
