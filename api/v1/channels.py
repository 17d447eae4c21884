"""
API v1 Channel Routes
Connect, inspect, verify and disconnect a restaurant's WhatsApp numbers and Facebook Pages
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_connection_orchestrator, get_current_tenant, get_db, get_token_verifier
from db.models import ChannelProvider
from db.schemas import (
    AccountListResponse,
    AccountSelection,
    ChannelAccountOut,
    ConnectRequest,
    ConnectResponse,
    DisconnectResponse,
    StatusResponse,
    TokenData,
    VerifyResponse,
)
from services.channelServices.connection_orchestrator import (
    CONNECTION_MESSAGES,
    ConnectionOrchestrator,
    connection_state,
)
from services.channelServices.token_verifier import TokenVerifier
from utils.errors import NotFoundError, handle_api_errors
from utils.logger import logger

router = APIRouter()

# =============================================================================
# Connection
# =============================================================================

@router.post("/{provider}/connect", response_model=ConnectResponse)
@handle_api_errors
async def connect_channel(
    provider: ChannelProvider,
    request: ConnectRequest,
    tenant: TokenData = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    orchestrator: ConnectionOrchestrator = Depends(get_connection_orchestrator),
):
    """
    Finish a signup popup: exchange the token, discover ids, store the account

    The response state tells the UI which step comes next.
    """
    account = await orchestrator.connect(
        db,
        tenant.tenant_id,
        provider,
        request.access_token,
        code=request.code,
        hint_business_account_id=request.business_account_id,
        hint_channel_id=request.channel_id,
    )
    state = connection_state(account)
    return ConnectResponse(
        success=True,
        state=state,
        message=CONNECTION_MESSAGES.get(state, "Connection updated"),
        account=ChannelAccountOut.from_account(account),
    )


@router.get("/{provider}/status", response_model=StatusResponse)
@handle_api_errors
async def get_channel_status(
    provider: ChannelProvider,
    tenant: TokenData = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    orchestrator: ConnectionOrchestrator = Depends(get_connection_orchestrator),
):
    """Single-account view kept for older dashboard clients"""
    account = await orchestrator.get_primary_active_account(db, tenant.tenant_id, provider)
    if account is None:
        return StatusResponse(connected=False, message=f"No active {provider.value} connection")
    return StatusResponse(connected=True, data=ChannelAccountOut.from_account(account))


@router.get("", response_model=AccountListResponse)
@handle_api_errors
async def list_channels(
    provider: Optional[ChannelProvider] = Query(None),
    tenant: TokenData = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    orchestrator: ConnectionOrchestrator = Depends(get_connection_orchestrator),
):
    accounts = await orchestrator.store.list_accounts(db, tenant.tenant_id, provider)
    now = datetime.utcnow()
    return AccountListResponse(
        accounts=[ChannelAccountOut.from_account(account, now) for account in accounts],
        total=len(accounts),
    )

# =============================================================================
# Lifecycle
# =============================================================================

@router.post("/{provider}/disconnect", response_model=DisconnectResponse)
@handle_api_errors
async def disconnect_channel(
    provider: ChannelProvider,
    selection: Optional[AccountSelection] = Body(None),
    tenant: TokenData = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    orchestrator: ConnectionOrchestrator = Depends(get_connection_orchestrator),
):
    account_id = selection.account_id if selection else None
    accounts = await orchestrator.disconnect(db, tenant.tenant_id, account_id=account_id, provider=provider)
    if not accounts:
        raise NotFoundError(f"{provider.value.capitalize()} connection")

    logger.info(f"🔌 Tenant {tenant.tenant_id} disconnected {len(accounts)} {provider.value} account(s)")
    return DisconnectResponse(
        message=f"{provider.value.capitalize()} disconnected",
        disconnected=len(accounts),
    )


@router.post("/{provider}/verify", response_model=VerifyResponse)
@handle_api_errors
async def verify_channel(
    provider: ChannelProvider,
    selection: Optional[AccountSelection] = Body(None),
    tenant: TokenData = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
    orchestrator: ConnectionOrchestrator = Depends(get_connection_orchestrator),
    verifier: TokenVerifier = Depends(get_token_verifier),
):
    """Check the stored token against Meta; a rejected token disconnects the account"""
    account_id = selection.account_id if selection else None
    if account_id is None:
        primary = await orchestrator.get_primary_active_account(db, tenant.tenant_id, provider)
        if primary is None:
            raise NotFoundError(f"Active {provider.value} connection")
        account_id = primary.id

    result = await verifier.verify(db, account_id, tenant_id=tenant.tenant_id)
    if result.valid:
        message = "Token is valid"
    elif result.reason == "invalid_token":
        message = "Token was rejected by Meta; please reconnect"
    else:
        message = "Token could not be verified"
    return VerifyResponse(success=True, valid=result.valid, status=result.status, message=message)
