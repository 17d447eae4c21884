"""
Channel connection models

A ChannelAccount is one connected messaging identity (a WhatsApp phone number
or a Facebook Page) owned by a restaurant (tenant).
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, Index, and_, not_
from sqlalchemy.ext.hybrid import hybrid_method
from sqlalchemy.types import TypeDecorator

from utils.encryption import token_encryption
from .db import Base


class ChannelProvider(str, enum.Enum):
    WHATSAPP = "whatsapp"
    FACEBOOK = "facebook"


class ChannelStatus(str, enum.Enum):
    PENDING_SIGNUP = "pending_signup"  # token saved, no ids yet
    PENDING_PHONE = "pending_phone"    # business account known, channel not yet
    ACTIVE = "active"
    EXPIRED = "expired"                # computed on read, never written
    INACTIVE = "inactive"              # revoked or disconnected


PENDING_STATUSES = (ChannelStatus.PENDING_SIGNUP.value, ChannelStatus.PENDING_PHONE.value)


class EncryptedToken(TypeDecorator):
    """Text column transparently encrypted with the platform token key"""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return token_encryption.encrypt(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return token_encryption.decrypt(value)


class ChannelAccount(Base):
    """
    Connected channel credential for a tenant

    channel_external_id is unique across all tenants: inbound webhooks carry
    only that value. Rows still waiting for it are keyed by (tenant_id, provider).
    """
    __tablename__ = "channel_accounts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    provider = Column(String(32), nullable=False)

    # Provider identifiers
    channel_external_id = Column(String(128), nullable=True, unique=True, index=True)  # phone_number_id / page_id
    business_account_id = Column(String(128), nullable=True)  # WABA id

    # Credential
    access_token = Column(EncryptedToken, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    # Lifecycle
    status = Column(String(32), nullable=False, default=ChannelStatus.PENDING_SIGNUP.value)
    is_active = Column(Boolean, nullable=False, default=True)

    # Cosmetic metadata, refreshed opportunistically
    display_name = Column(String(256), nullable=True)
    display_phone_number = Column(String(64), nullable=True)
    quality_rating = Column(String(32), nullable=True)

    webhook_url = Column(String(512), nullable=True)

    # Timestamps
    connected_at = Column(DateTime, nullable=True)
    last_verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_channel_tenant_provider', 'tenant_id', 'provider', 'status'),
        Index('idx_channel_routing', 'channel_external_id', 'status'),
    )

    @hybrid_method
    def is_expired_at(self, now: datetime) -> bool:
        """Single source of truth for token expiry"""
        return self.token_expires_at is not None and self.token_expires_at <= now

    @is_expired_at.expression
    def is_expired_at(cls, now):
        return and_(cls.token_expires_at.isnot(None), cls.token_expires_at <= now)

    @hybrid_method
    def is_routable_at(self, now: datetime) -> bool:
        return (
            self.status == ChannelStatus.ACTIVE.value
            and bool(self.is_active)
            and not self.is_expired_at(now)
        )

    @is_routable_at.expression
    def is_routable_at(cls, now):
        return and_(
            cls.status == ChannelStatus.ACTIVE.value,
            cls.is_active == True,  # noqa: E712
            not_(cls.is_expired_at(now)),
        )

    def effective_status(self, now: Optional[datetime] = None) -> ChannelStatus:
        """Persisted status with read-time expiry applied"""
        now = now or datetime.utcnow()
        if self.status == ChannelStatus.ACTIVE.value and self.is_expired_at(now):
            return ChannelStatus.EXPIRED
        return ChannelStatus(self.status)

    def __repr__(self):
        return f'<ChannelAccount {self.id} {self.provider}:{self.channel_external_id} tenant={self.tenant_id} {self.status}>'
