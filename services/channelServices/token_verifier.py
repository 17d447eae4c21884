"""
Token Verifier
Confirms stored tokens still work and revokes the ones Meta rejects
"""

from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ChannelAccount, ChannelStatus
from services.channelServices.credential_store import CredentialStore, credential_store
from services.channelServices.meta_graph_client import MetaGraphClient
from utils.errors import ChannelAccountNotFound, InvalidToken, ProviderRequestError, ProviderUnavailable
from utils.logger import logger


class VerificationResult(BaseModel):
    account_id: int
    valid: bool
    status: ChannelStatus
    reason: Optional[str] = None


class TokenVerifier:
    """
    Calls GET /me with each account's stored token

    An authentication-class rejection is a hard state change (inactive); an
    unreachable provider leaves the row alone. A single verify propagates the
    outage, while the sweep records it and moves on to the next account.
    """

    def __init__(self, graph: MetaGraphClient, store: Optional[CredentialStore] = None):
        self.graph = graph
        self.store = store or credential_store

    async def verify(self, db: AsyncSession, account_id: int, tenant_id: Optional[int] = None) -> VerificationResult:
        """
        Verify one account's token

        Raises:
            ChannelAccountNotFound: no such account (for this tenant)
            ProviderUnavailable: transient provider failure, status untouched
        """
        if tenant_id is not None:
            account = await self.store.get_account(db, tenant_id, account_id)
        else:
            account = await self.store.find_by_id(db, account_id)
        if account is None:
            raise ChannelAccountNotFound(f"Channel account {account_id} not found", {"account_id": account_id})
        return await self.verify_account(db, account)

    async def verify_account(self, db: AsyncSession, account: ChannelAccount) -> VerificationResult:
        if account.status == ChannelStatus.INACTIVE.value or not account.access_token:
            return self._result(account, False, "inactive")

        try:
            await self.graph.get("me", params={"fields": "id", "access_token": account.access_token})
        except InvalidToken:
            logger.warning(f"🔒 Token for channel account {account.id} rejected by Meta")
            await self.store.revoke(db, account)
            return self._result(account, False, "invalid_token")
        except ProviderRequestError as e:
            logger.warning(f"⚠️ Verification of account {account.id} inconclusive: {e.message}")
            return self._result(account, False, "provider_error")

        await self.store.mark_verified(db, account)
        logger.info(f"✅ Token for channel account {account.id} verified")
        return self._result(account, True)

    async def verify_due(self, db: AsyncSession, max_age: timedelta) -> List[VerificationResult]:
        """Verify every active account not verified within max_age"""
        due = await self.store.list_due_for_verification(db, datetime.utcnow() - max_age)
        logger.info(f"🔍 {len(due)} channel account(s) due for verification")

        results = []
        for account in due:
            try:
                results.append(await self.verify_account(db, account))
            except ProviderUnavailable as e:
                logger.warning(f"⚠️ Meta unavailable while verifying account {account.id}, will retry next cycle: {e.message}")
                results.append(self._result(account, False, "provider_unavailable"))
        return results

    @staticmethod
    def _result(account: ChannelAccount, valid: bool, reason: Optional[str] = None) -> VerificationResult:
        return VerificationResult(
            account_id=account.id,
            valid=valid,
            status=account.effective_status(),
            reason=reason,
        )
