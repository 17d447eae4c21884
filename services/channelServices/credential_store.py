"""
Credential Store
Single source of truth for channel connection state

Rows are located by channel_external_id once it is known and by
(tenant_id, provider) while they are still pending. The unique index on
channel_external_id is the only concurrency guard.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ChannelAccount, ChannelProvider, ChannelStatus, PENDING_STATUSES
from utils.errors import ChannelAccountNotFound, ChannelAlreadyClaimed
from utils.logger import logger


class CredentialValues(BaseModel):
    """Everything a connect attempt wants persisted"""
    status: ChannelStatus
    access_token: str
    token_expires_at: Optional[datetime] = None
    business_account_id: Optional[str] = None
    channel_external_id: Optional[str] = None
    display_name: Optional[str] = None
    display_phone_number: Optional[str] = None
    quality_rating: Optional[str] = None
    webhook_url: Optional[str] = None


class CredentialStore:

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_by_id(self, db: AsyncSession, account_id: int) -> Optional[ChannelAccount]:
        result = await db.execute(select(ChannelAccount).where(ChannelAccount.id == account_id))
        return result.scalar_one_or_none()

    async def find_by_channel_id(self, db: AsyncSession, channel_external_id: str) -> Optional[ChannelAccount]:
        result = await db.execute(
            select(ChannelAccount)
            .where(ChannelAccount.channel_external_id == channel_external_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def find_routable(
        self,
        db: AsyncSession,
        channel_external_id: str,
        provider: Optional[ChannelProvider] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ChannelAccount]:
        """Unique-index lookup restricted to active, unexpired rows"""
        now = now or datetime.utcnow()
        query = select(ChannelAccount).where(
            ChannelAccount.channel_external_id == channel_external_id,
            ChannelAccount.is_routable_at(now),
        )
        if provider is not None:
            query = query.where(ChannelAccount.provider == provider.value)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def find_pending(self, db: AsyncSession, tenant_id: int, provider: ChannelProvider) -> Optional[ChannelAccount]:
        """Most recent row still waiting for its channel id"""
        result = await db.execute(
            select(ChannelAccount)
            .where(
                ChannelAccount.tenant_id == tenant_id,
                ChannelAccount.provider == provider.value,
                ChannelAccount.channel_external_id.is_(None),
                ChannelAccount.status.in_(PENDING_STATUSES),
            )
            .order_by(ChannelAccount.updated_at.desc(), ChannelAccount.id.desc())
            .limit(1)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    async def get_account(self, db: AsyncSession, tenant_id: int, account_id: int) -> Optional[ChannelAccount]:
        result = await db.execute(
            select(ChannelAccount).where(
                ChannelAccount.id == account_id,
                ChannelAccount.tenant_id == tenant_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_accounts(
        self,
        db: AsyncSession,
        tenant_id: int,
        provider: Optional[ChannelProvider] = None,
    ) -> List[ChannelAccount]:
        """Every row the tenant owns, newest first (dashboard view)"""
        query = select(ChannelAccount).where(ChannelAccount.tenant_id == tenant_id)
        if provider is not None:
            query = query.where(ChannelAccount.provider == provider.value)
        query = query.order_by(ChannelAccount.connected_at.desc(), ChannelAccount.id.desc())
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_active_accounts(
        self,
        db: AsyncSession,
        tenant_id: int,
        provider: Optional[ChannelProvider] = None,
        now: Optional[datetime] = None,
    ) -> List[ChannelAccount]:
        now = now or datetime.utcnow()
        query = select(ChannelAccount).where(
            ChannelAccount.tenant_id == tenant_id,
            ChannelAccount.is_routable_at(now),
        )
        if provider is not None:
            query = query.where(ChannelAccount.provider == provider.value)
        query = query.order_by(ChannelAccount.connected_at.desc(), ChannelAccount.id.desc())
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_primary_active_account(
        self,
        db: AsyncSession,
        tenant_id: int,
        provider: Optional[ChannelProvider] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ChannelAccount]:
        """Backward-compatible single-account view: most recently connected active row"""
        accounts = await self.get_active_accounts(db, tenant_id, provider, now)
        return accounts[0] if accounts else None

    async def list_due_for_verification(self, db: AsyncSession, verified_before: datetime) -> List[ChannelAccount]:
        result = await db.execute(
            select(ChannelAccount)
            .where(
                ChannelAccount.status == ChannelStatus.ACTIVE.value,
                ChannelAccount.is_active == True,  # noqa: E712
                or_(
                    ChannelAccount.last_verified_at.is_(None),
                    ChannelAccount.last_verified_at < verified_before,
                ),
            )
            .order_by(ChannelAccount.last_verified_at.asc(), ChannelAccount.id.asc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_connection(
        self,
        db: AsyncSession,
        tenant_id: int,
        provider: ChannelProvider,
        values: CredentialValues,
    ) -> ChannelAccount:
        """
        Insert or update the row for this connect attempt and commit

        A concurrent writer that inserts the same channel id first makes our
        flush fail on the unique index; the attempt is replayed once so it
        lands on that row (or reports the conflicting owner).

        Raises:
            ChannelAlreadyClaimed: the channel id belongs to another tenant
        """
        for attempt in (1, 2):
            try:
                account = await self._upsert_once(db, tenant_id, provider, values)
                await db.commit()
                await db.refresh(account)
                logger.info(
                    f"💾 Stored {provider.value} account {account.id} for tenant {tenant_id}: "
                    f"status={account.status} channel={account.channel_external_id}"
                )
                return account
            except IntegrityError:
                await db.rollback()
                if values.channel_external_id is None:
                    raise
                if attempt == 2:
                    logger.warning(f"⚠️ Channel {values.channel_external_id} still conflicting after retry")
                    raise ChannelAlreadyClaimed(values.channel_external_id)
                logger.warning(f"🔁 Concurrent write on channel {values.channel_external_id}, replaying upsert")

    async def _upsert_once(
        self,
        db: AsyncSession,
        tenant_id: int,
        provider: ChannelProvider,
        values: CredentialValues,
    ) -> ChannelAccount:
        now = datetime.utcnow()
        channel_id = values.channel_external_id

        if channel_id:
            account = await self.find_by_channel_id(db, channel_id)
            if account is not None and account.tenant_id != tenant_id:
                if account.status != ChannelStatus.INACTIVE.value:
                    logger.warning(
                        f"🚫 Tenant {tenant_id} tried to claim channel {channel_id} owned by tenant {account.tenant_id}"
                    )
                    raise ChannelAlreadyClaimed(channel_id)
                logger.warning(
                    f"♻️ Reassigning disconnected channel {channel_id} from tenant {account.tenant_id} to tenant {tenant_id}"
                )
                self._reset_for_new_owner(account, tenant_id)

            pending = await self.find_pending(db, tenant_id, provider)
            if account is None:
                # Re-key the pending row now that its channel id is known
                account, pending = pending, None
            if pending is not None and pending.id != account.id:
                logger.info(f"🧹 Retiring pending account {pending.id}, superseded by channel {channel_id}")
                self._retire(pending, now)
        else:
            account = await self.find_pending(db, tenant_id, provider)
            if account is not None and not values.business_account_id and account.business_account_id:
                # Never forget a business id an earlier attempt discovered
                values = values.model_copy(update={
                    "business_account_id": account.business_account_id,
                    "status": ChannelStatus.PENDING_PHONE,
                })

        if account is None:
            account = ChannelAccount(tenant_id=tenant_id, provider=provider.value, created_at=now)
            db.add(account)

        self._apply(account, values, now)
        await db.flush()
        return account

    def _apply(self, account: ChannelAccount, values: CredentialValues, now: datetime) -> None:
        becoming_active = (
            values.status == ChannelStatus.ACTIVE
            and (account.status != ChannelStatus.ACTIVE.value or account.is_expired_at(now) or not account.is_active)
        )

        account.access_token = values.access_token
        account.token_expires_at = values.token_expires_at
        account.status = values.status.value
        account.is_active = values.status != ChannelStatus.INACTIVE
        if values.business_account_id:
            account.business_account_id = values.business_account_id
        if values.channel_external_id:
            account.channel_external_id = values.channel_external_id

        for field in ("display_name", "display_phone_number", "quality_rating", "webhook_url"):
            value = getattr(values, field)
            if value is not None:
                setattr(account, field, value)

        if becoming_active or (values.status == ChannelStatus.ACTIVE and account.connected_at is None):
            account.connected_at = now
        account.last_verified_at = now
        account.updated_at = now

    async def deactivate(
        self,
        db: AsyncSession,
        tenant_id: int,
        account_id: Optional[int] = None,
        provider: Optional[ChannelProvider] = None,
    ) -> List[ChannelAccount]:
        """
        Soft-delete the tenant's accounts (all of them, or just account_id)

        Raises:
            ChannelAccountNotFound: account_id given but not owned by the tenant
        """
        query = select(ChannelAccount).where(
            ChannelAccount.tenant_id == tenant_id,
            ChannelAccount.status != ChannelStatus.INACTIVE.value,
        )
        if provider is not None:
            query = query.where(ChannelAccount.provider == provider.value)
        if account_id is not None:
            query = query.where(ChannelAccount.id == account_id)

        result = await db.execute(query)
        accounts = list(result.scalars().all())

        if account_id is not None and not accounts:
            raise ChannelAccountNotFound(f"Channel account {account_id} not found", {"account_id": account_id})

        now = datetime.utcnow()
        for account in accounts:
            self._retire(account, now)
        await db.commit()

        logger.info(f"🔌 Disconnected {len(accounts)} channel account(s) for tenant {tenant_id}")
        return accounts

    async def revoke(self, db: AsyncSession, account: ChannelAccount) -> ChannelAccount:
        """Hard state change after the provider rejected the token"""
        self._retire(account, datetime.utcnow())
        await db.commit()
        logger.warning(f"🔒 Revoked channel account {account.id} (tenant {account.tenant_id})")
        return account

    async def mark_verified(self, db: AsyncSession, account: ChannelAccount) -> ChannelAccount:
        now = datetime.utcnow()
        account.last_verified_at = now
        account.updated_at = now
        await db.commit()
        return account

    @staticmethod
    def _reset_for_new_owner(account: ChannelAccount, tenant_id: int) -> None:
        """Nothing the previous tenant stored may carry over"""
        account.tenant_id = tenant_id
        account.business_account_id = None
        account.display_name = None
        account.display_phone_number = None
        account.quality_rating = None
        account.webhook_url = None
        account.token_expires_at = None
        account.connected_at = None
        account.last_verified_at = None

    @staticmethod
    def _retire(account: ChannelAccount, now: datetime) -> None:
        account.status = ChannelStatus.INACTIVE.value
        account.is_active = False
        account.updated_at = now


credential_store = CredentialStore()
