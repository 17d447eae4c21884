"""
Connection Orchestrator
Runs exchange -> resolve -> persist for a tenant connecting a channel
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import ProviderConfig
from db.models import ChannelAccount, ChannelProvider, ChannelStatus
from services.channelServices.credential_store import CredentialStore, CredentialValues, credential_store
from services.channelServices.identity_resolver import ChannelMetadata, IdentityResolver
from services.channelServices.meta_graph_client import MetaGraphClient
from services.channelServices.token_exchanger import TokenExchanger
from utils.errors import TokenExchangeFailed
from utils.logger import logger

# Webhook path segment per provider
WEBHOOK_SEGMENTS = {
    ChannelProvider.WHATSAPP: "whatsapp",
    ChannelProvider.FACEBOOK: "messenger",
}

# UI-facing label for the step the tenant is on
CONNECTION_STATES = {
    ChannelStatus.ACTIVE.value: "connected",
    ChannelStatus.PENDING_PHONE.value: "phone_pending",
    ChannelStatus.PENDING_SIGNUP.value: "signup_pending",
}

CONNECTION_MESSAGES = {
    "connected": "Channel connected",
    "phone_pending": "Business account linked. Finish adding a phone number or page to start receiving messages",
    "signup_pending": "Token saved. Complete the signup flow, then connect again",
}


def build_webhook_url(public_base_url: str, provider: ChannelProvider, channel_external_id: str) -> str:
    return f"{public_base_url.rstrip('/')}/api/v1/webhooks/{WEBHOOK_SEGMENTS[provider]}/{channel_external_id}"


def connection_state(account: ChannelAccount) -> str:
    return CONNECTION_STATES.get(account.status, account.status)


class ConnectionOrchestrator:
    """
    Ties the Token Exchanger, Identity Resolver and Credential Store together

    Nothing is written before the exchange succeeds. Identity gaps never fail
    the call; they only decide which pending status the row lands in.
    """

    def __init__(
        self,
        exchanger: TokenExchanger,
        resolver: IdentityResolver,
        store: CredentialStore,
        public_base_url: str,
    ):
        self.exchanger = exchanger
        self.resolver = resolver
        self.store = store
        self.public_base_url = public_base_url

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        graph: Optional[MetaGraphClient] = None,
        store: Optional[CredentialStore] = None,
    ) -> "ConnectionOrchestrator":
        graph = graph or MetaGraphClient(config)
        return cls(
            exchanger=TokenExchanger(graph),
            resolver=IdentityResolver(graph),
            store=store or credential_store,
            public_base_url=config.public_base_url,
        )

    async def connect(
        self,
        db: AsyncSession,
        tenant_id: int,
        provider: ChannelProvider,
        short_lived_token: Optional[str] = None,
        *,
        code: Optional[str] = None,
        hint_business_account_id: Optional[str] = None,
        hint_channel_id: Optional[str] = None,
    ) -> ChannelAccount:
        """
        Connect a channel for a tenant

        Returns the persisted row in active, pending_phone or pending_signup.

        Raises:
            TokenExchangeFailed: provider rejected the token/code
            ProviderUnavailable: provider unreachable during the exchange
            ChannelAlreadyClaimed: the resolved channel belongs to another tenant
        """
        logger.info(f"🔗 Connecting {provider.value} for tenant {tenant_id}")

        if short_lived_token:
            exchanged = await self.exchanger.exchange(short_lived_token)
        elif code:
            exchanged = await self.exchanger.exchange_code(code)
        else:
            raise TokenExchangeFailed("An access token or authorization code is required")

        now = datetime.utcnow()
        access_token = exchanged.access_token
        expires_at = now + timedelta(seconds=exchanged.expires_in) if exchanged.expires_in else None

        identity = await self.resolver.resolve(
            provider,
            access_token,
            hint_business_account_id=hint_business_account_id,
            hint_channel_id=hint_channel_id,
        )
        business_id = identity.business_account.value
        channel_id = identity.channel.value

        if identity.channel.is_known:
            metadata = identity.metadata
            if metadata.is_empty:
                metadata = await self.resolver.fetch_channel_metadata(provider, access_token, channel_id)
            if metadata.channel_access_token:
                # Page tokens are what messaging uses; they do not expire
                access_token, expires_at = metadata.channel_access_token, None
            values = self._values(ChannelStatus.ACTIVE, access_token, expires_at, business_id, metadata)
            values.channel_external_id = channel_id
            values.webhook_url = build_webhook_url(self.public_base_url, provider, channel_id)
        elif identity.business_account.is_known:
            values = self._values(ChannelStatus.PENDING_PHONE, access_token, expires_at, business_id)
        else:
            values = self._values(ChannelStatus.PENDING_SIGNUP, access_token, expires_at)

        account = await self.store.upsert_connection(db, tenant_id, provider, values)
        logger.info(
            f"✅ Tenant {tenant_id} {provider.value} connection is {connection_state(account)} (account {account.id})"
        )
        return account

    @staticmethod
    def _values(
        status: ChannelStatus,
        access_token: str,
        expires_at: Optional[datetime],
        business_account_id: Optional[str] = None,
        metadata: Optional[ChannelMetadata] = None,
    ) -> CredentialValues:
        metadata = metadata or ChannelMetadata()
        return CredentialValues(
            status=status,
            access_token=access_token,
            token_expires_at=expires_at,
            business_account_id=business_account_id,
            display_name=metadata.display_name,
            display_phone_number=metadata.display_phone_number,
            quality_rating=metadata.quality_rating,
        )

    async def get_active_accounts(
        self,
        db: AsyncSession,
        tenant_id: int,
        provider: Optional[ChannelProvider] = None,
    ) -> List[ChannelAccount]:
        return await self.store.get_active_accounts(db, tenant_id, provider)

    async def get_primary_active_account(
        self,
        db: AsyncSession,
        tenant_id: int,
        provider: Optional[ChannelProvider] = None,
    ) -> Optional[ChannelAccount]:
        return await self.store.get_primary_active_account(db, tenant_id, provider)

    async def disconnect(
        self,
        db: AsyncSession,
        tenant_id: int,
        account_id: Optional[int] = None,
        provider: Optional[ChannelProvider] = None,
    ) -> List[ChannelAccount]:
        """Deactivate one account, or every account the tenant has (for a provider)"""
        return await self.store.deactivate(db, tenant_id, account_id=account_id, provider=provider)
