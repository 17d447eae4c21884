from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime

from db.models import ChannelAccount, ChannelStatus


class TokenData(BaseModel):
    """Claims the auth service puts in its JWT"""
    user_id: Optional[int] = None
    tenant_id: int


class ConnectRequest(BaseModel):
    """
    Body sent by the signup UI once the provider popup finishes

    Either a short-lived access_token (embedded signup) or an OAuth code
    (redirect flow) is required. Ids captured during embedded signup are
    passed as hints.
    """
    access_token: Optional[str] = None
    code: Optional[str] = None
    business_account_id: Optional[str] = Field(None, alias="waba_id")
    channel_id: Optional[str] = Field(None, alias="phone_number_id")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def require_token_or_code(self):
        if not self.access_token and not self.code:
            raise ValueError("Authorization code or access token is required")
        return self


class AccountSelection(BaseModel):
    account_id: Optional[int] = None


class ChannelAccountOut(BaseModel):
    """UI-facing view of a channel account; never carries the access token"""
    id: int
    provider: str
    status: ChannelStatus
    channel_external_id: Optional[str] = None
    business_account_id: Optional[str] = None
    display_name: Optional[str] = None
    display_phone_number: Optional[str] = None
    quality_rating: Optional[str] = None
    webhook_url: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    is_expired: bool = False
    connected_at: Optional[datetime] = None
    last_verified_at: Optional[datetime] = None

    @classmethod
    def from_account(cls, account: ChannelAccount, now: Optional[datetime] = None) -> "ChannelAccountOut":
        status = account.effective_status(now)
        return cls(
            id=account.id,
            provider=account.provider,
            status=status,
            channel_external_id=account.channel_external_id,
            business_account_id=account.business_account_id,
            display_name=account.display_name,
            display_phone_number=account.display_phone_number,
            quality_rating=account.quality_rating,
            webhook_url=account.webhook_url,
            token_expires_at=account.token_expires_at,
            is_expired=status == ChannelStatus.EXPIRED,
            connected_at=account.connected_at,
            last_verified_at=account.last_verified_at,
        )


class ConnectResponse(BaseModel):
    success: bool = True
    state: str  # connected | phone_pending | signup_pending
    message: str
    account: ChannelAccountOut


class StatusResponse(BaseModel):
    success: bool = True
    connected: bool
    message: Optional[str] = None
    data: Optional[ChannelAccountOut] = None


class AccountListResponse(BaseModel):
    accounts: List[ChannelAccountOut]
    total: int


class DisconnectResponse(BaseModel):
    success: bool = True
    message: str
    disconnected: int


class VerifyResponse(BaseModel):
    success: bool
    valid: bool
    status: ChannelStatus
    message: str


class WebhookAck(BaseModel):
    status: str = "ok"
    routed: int = 0
    dropped: int = 0
