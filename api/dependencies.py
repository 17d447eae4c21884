from fastapi import Depends, HTTPException, status, Cookie
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from jose import JWTError, jwt
from typing import AsyncGenerator, Optional

from config.settings import settings
from db.db import SessionLocal
from db.schemas import TokenData
from services.channelServices.connection_orchestrator import ConnectionOrchestrator
from services.channelServices.meta_graph_client import MetaGraphClient
from services.channelServices.token_verifier import TokenVerifier
from services.channelServices.webhook_router import WebhookRouter, webhook_router

# Tokens are issued by the platform auth service; we only decode them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with SessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_tenant(
    auth_token: Optional[str] = Depends(oauth2_scheme),
    access_token: Optional[str] = Cookie(None),
) -> TokenData:
    """
    Resolve the caller's tenant from either httpOnly cookie or Authorization header
    Priority: 1. HttpOnly cookie, 2. Authorization header
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token = access_token or auth_token
    if not token:
        raise credentials_exception

    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        tenant_id = payload.get("tenant_id")
        if tenant_id is None:
            raise credentials_exception
        user_id = payload.get("sub")
        return TokenData(
            user_id=int(user_id) if user_id is not None else None,
            tenant_id=int(tenant_id),
        )
    except (JWTError, ValueError):
        raise credentials_exception


def get_graph_client() -> MetaGraphClient:
    return MetaGraphClient(settings.get_provider_config())


def get_connection_orchestrator(graph: MetaGraphClient = Depends(get_graph_client)) -> ConnectionOrchestrator:
    return ConnectionOrchestrator.from_config(graph.config, graph=graph)


def get_token_verifier(graph: MetaGraphClient = Depends(get_graph_client)) -> TokenVerifier:
    return TokenVerifier(graph)


def get_webhook_router() -> WebhookRouter:
    return webhook_router
