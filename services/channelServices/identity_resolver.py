"""
Identity Resolver
Discovers the business account id and channel id behind a freshly exchanged token

Meta's embedded signup can finish after the OAuth popup returns, so "token
ready, identity not yet ready" is a normal outcome here. Every provider call
in this module is best-effort: failures are logged and degrade the field.
"""

import enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from db.models import ChannelProvider
from services.channelServices.meta_graph_client import MetaGraphClient
from utils.errors import ChannelConnectionError
from utils.logger import logger


class LookupState(str, enum.Enum):
    KNOWN = "known"
    UNKNOWN = "unknown"
    LOOKUP_FAILED = "lookup_failed"


class ResolvedField(BaseModel):
    state: LookupState = LookupState.UNKNOWN
    value: Optional[str] = None
    source: Optional[str] = None  # hint | debug_token | businesses | lookup

    @property
    def is_known(self) -> bool:
        return self.state == LookupState.KNOWN

    @classmethod
    def known(cls, value: str, source: str) -> "ResolvedField":
        return cls(state=LookupState.KNOWN, value=value, source=source)

    @classmethod
    def from_hint(cls, hint: Optional[str]) -> "ResolvedField":
        if hint:
            return cls.known(hint, "hint")
        return cls()


class ChannelMetadata(BaseModel):
    display_name: Optional[str] = None
    display_phone_number: Optional[str] = None
    quality_rating: Optional[str] = None
    # Page-scoped token for Facebook; replaces the user token when present
    channel_access_token: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not any((self.display_name, self.display_phone_number, self.quality_rating, self.channel_access_token))


class ResolvedIdentity(BaseModel):
    provider: ChannelProvider
    business_account: ResolvedField
    channel: ResolvedField
    metadata: ChannelMetadata = ChannelMetadata()


class ProviderProfile(BaseModel):
    """Where each provider keeps its identifiers on the Graph API"""
    business_scope: str
    channel_lookup_requires_business: bool


PROVIDER_PROFILES = {
    ChannelProvider.WHATSAPP: ProviderProfile(
        business_scope="whatsapp_business_management",
        channel_lookup_requires_business=True,
    ),
    ChannelProvider.FACEBOOK: ProviderProfile(
        business_scope="business_management",
        channel_lookup_requires_business=False,
    ),
}

WHATSAPP_PHONE_FIELDS = "id,display_phone_number,verified_name,quality_rating"
FACEBOOK_PAGE_FIELDS = "id,name,access_token"


class IdentityResolver:
    """
    Resolves identifiers in a fixed order:

    1. client-supplied hints
    2. token introspection (debug_token granular scopes), then for WhatsApp the
       businesses the user belongs to
    3. channel lookup (WABA phone numbers, or the user's pages)
    """

    def __init__(self, graph: MetaGraphClient):
        self.graph = graph

    async def resolve(
        self,
        provider: ChannelProvider,
        access_token: str,
        hint_business_account_id: Optional[str] = None,
        hint_channel_id: Optional[str] = None,
    ) -> ResolvedIdentity:
        profile = PROVIDER_PROFILES[provider]
        business = ResolvedField.from_hint(hint_business_account_id)
        channel = ResolvedField.from_hint(hint_channel_id)
        metadata = ChannelMetadata()

        if not business.is_known:
            business = await self._discover_business_account(provider, access_token)

        if not channel.is_known and (business.is_known or not profile.channel_lookup_requires_business):
            channel, metadata = await self._discover_channel(provider, access_token, business.value)

        logger.info(
            f"🔍 Identity resolved for {provider.value}: "
            f"business={business.state.value}({business.source}) channel={channel.state.value}({channel.source})"
        )
        return ResolvedIdentity(provider=provider, business_account=business, channel=channel, metadata=metadata)

    async def fetch_channel_metadata(
        self,
        provider: ChannelProvider,
        access_token: str,
        channel_id: str,
    ) -> ChannelMetadata:
        """Best-effort display metadata for a known channel id"""
        fields = WHATSAPP_PHONE_FIELDS if provider == ChannelProvider.WHATSAPP else FACEBOOK_PAGE_FIELDS
        try:
            data = await self.graph.get(channel_id, params={"fields": fields, "access_token": access_token})
        except ChannelConnectionError as e:
            logger.warning(f"⚠️ Could not fetch metadata for channel {channel_id}: {e.message}")
            return ChannelMetadata()
        return self._metadata_from(provider, data)

    # ------------------------------------------------------------------
    # Business account discovery
    # ------------------------------------------------------------------

    async def _discover_business_account(self, provider: ChannelProvider, access_token: str) -> ResolvedField:
        failed = False

        try:
            business_id = await self._business_from_debug_token(provider, access_token)
            if business_id:
                return ResolvedField.known(business_id, "debug_token")
        except ChannelConnectionError as e:
            logger.warning(f"⚠️ Token introspection failed: {e.message}")
            failed = True

        if provider == ChannelProvider.WHATSAPP:
            try:
                business_id = await self._business_from_businesses(access_token)
                if business_id:
                    return ResolvedField.known(business_id, "businesses")
            except ChannelConnectionError as e:
                logger.warning(f"⚠️ Business lookup failed: {e.message}")
                failed = True

        return ResolvedField(state=LookupState.LOOKUP_FAILED if failed else LookupState.UNKNOWN)

    async def _business_from_debug_token(self, provider: ChannelProvider, access_token: str) -> Optional[str]:
        scope = PROVIDER_PROFILES[provider].business_scope
        data = await self.graph.get(
            "debug_token",
            params={"input_token": access_token, "access_token": self.graph.config.app_access_token},
        )
        for grant in (data.get("data") or {}).get("granular_scopes") or []:
            if grant.get("scope") == scope:
                target_ids = grant.get("target_ids") or []
                if target_ids:
                    return str(target_ids[0])
        return None

    async def _business_from_businesses(self, access_token: str) -> Optional[str]:
        data = await self.graph.get(
            "me/businesses",
            params={
                "fields": "owned_whatsapp_business_accounts,client_whatsapp_business_accounts",
                "access_token": access_token,
            },
        )
        for business in data.get("data") or []:
            for edge in ("owned_whatsapp_business_accounts", "client_whatsapp_business_accounts"):
                accounts = (business.get(edge) or {}).get("data") or []
                if accounts and accounts[0].get("id"):
                    return str(accounts[0]["id"])
        return None

    # ------------------------------------------------------------------
    # Channel discovery
    # ------------------------------------------------------------------

    async def _discover_channel(
        self,
        provider: ChannelProvider,
        access_token: str,
        business_account_id: Optional[str],
    ) -> Tuple[ResolvedField, ChannelMetadata]:
        if provider == ChannelProvider.WHATSAPP:
            path, fields = f"{business_account_id}/phone_numbers", WHATSAPP_PHONE_FIELDS
        else:
            path, fields = "me/accounts", FACEBOOK_PAGE_FIELDS

        try:
            data = await self.graph.get(path, params={"fields": fields, "access_token": access_token})
        except ChannelConnectionError as e:
            logger.warning(f"⚠️ Channel lookup failed for {provider.value}: {e.message}")
            return ResolvedField(state=LookupState.LOOKUP_FAILED), ChannelMetadata()

        channels = data.get("data") or []
        if not channels or not channels[0].get("id"):
            logger.info(f"📭 No {provider.value} channel found yet")
            return ResolvedField(), ChannelMetadata()

        first = channels[0]
        return ResolvedField.known(str(first["id"]), "lookup"), self._metadata_from(provider, first)

    @staticmethod
    def _metadata_from(provider: ChannelProvider, data: Dict[str, Any]) -> ChannelMetadata:
        if provider == ChannelProvider.WHATSAPP:
            return ChannelMetadata(
                display_name=data.get("verified_name"),
                display_phone_number=data.get("display_phone_number"),
                quality_rating=data.get("quality_rating"),
            )
        return ChannelMetadata(
            display_name=data.get("name"),
            channel_access_token=data.get("access_token"),
        )
