"""
Webhook Router
Maps a provider-supplied channel id on an inbound webhook to its owning tenant
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ChannelAccount, ChannelProvider
from services.channelServices.credential_store import CredentialStore, credential_store
from utils.logger import logger


class RoutedChannel(BaseModel):
    """What a downstream message handler needs, and nothing more"""
    account_id: int
    tenant_id: int
    provider: ChannelProvider
    channel_external_id: str
    access_token: str
    webhook_url: Optional[str] = None

    @classmethod
    def from_account(cls, account: ChannelAccount) -> "RoutedChannel":
        return cls(
            account_id=account.id,
            tenant_id=account.tenant_id,
            provider=ChannelProvider(account.provider),
            channel_external_id=account.channel_external_id,
            access_token=account.access_token,
            webhook_url=account.webhook_url,
        )


class WebhookRouter:

    def __init__(self, store: Optional[CredentialStore] = None):
        self.store = store or credential_store

    async def route_by_channel_id(
        self,
        db: AsyncSession,
        channel_external_id: str,
        provider: Optional[ChannelProvider] = None,
    ) -> Optional[RoutedChannel]:
        """
        Find the active account that owns channel_external_id

        Returns None (and the caller drops the event) for unknown, expired or
        inactive channels. Never raises.
        """
        if not channel_external_id:
            return None

        try:
            account = await self.store.find_routable(db, channel_external_id, provider)
        except SQLAlchemyError as e:
            logger.error(f"❌ Routing lookup failed for channel {channel_external_id}: {type(e).__name__}")
            return None

        if account is None:
            logger.warning(f"⚠️ No active channel account for {channel_external_id}, dropping event")
            return None

        logger.debug(f"📨 Channel {channel_external_id} routed to tenant {account.tenant_id}")
        return RoutedChannel.from_account(account)


def _objects(value: Any) -> List[Dict[str, Any]]:
    """JSON objects in a list field; anything malformed is skipped"""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _object(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def extract_whatsapp_channel_ids(payload: Dict[str, Any]) -> List[str]:
    """phone_number_id of every change in a WhatsApp Cloud API webhook"""
    ids = []
    for entry in _objects(payload.get("entry")):
        for change in _objects(entry.get("changes")):
            metadata = _object(_object(change.get("value")).get("metadata"))
            phone_number_id = metadata.get("phone_number_id")
            if isinstance(phone_number_id, (str, int)) and phone_number_id and str(phone_number_id) not in ids:
                ids.append(str(phone_number_id))
    return ids


def extract_messenger_channel_ids(payload: Dict[str, Any]) -> List[str]:
    """Page id of every Messenger entry (entry id, else the messaging recipient)"""
    ids = []
    for entry in _objects(payload.get("entry")):
        candidates = [entry.get("id")]
        candidates.extend(_object(event.get("recipient")).get("id") for event in _objects(entry.get("messaging")))
        for page_id in candidates:
            if isinstance(page_id, (str, int)) and page_id and str(page_id) not in ids:
                ids.append(str(page_id))
                break
    return ids


webhook_router = WebhookRouter()
