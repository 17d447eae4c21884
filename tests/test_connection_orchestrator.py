from datetime import datetime, timedelta

import httpx
import pytest

from db.models import ChannelProvider, ChannelStatus
from services.channelServices.connection_orchestrator import build_webhook_url, connection_state
from services.channelServices.webhook_router import WebhookRouter
from utils.errors import ChannelAlreadyClaimed, ProviderUnavailable, TokenExchangeFailed
from tests.conftest import (
    all_accounts,
    make_account,
    stub_long_lived_token,
    stub_no_business_discovery,
    stub_phone_numbers,
)

WHATSAPP = ChannelProvider.WHATSAPP


@pytest.mark.asyncio
async def test_unknown_identity_creates_pending_signup_row(orchestrator, graph_api, db):
    stub_long_lived_token(graph_api)
    stub_no_business_discovery(graph_api)

    account = await orchestrator.connect(db, 7, WHATSAPP, "t1")

    rows = await all_accounts(db)
    assert len(rows) == 1
    assert rows[0].id == account.id
    assert rows[0].tenant_id == 7
    assert rows[0].status == ChannelStatus.PENDING_SIGNUP.value
    assert rows[0].business_account_id is None
    assert rows[0].channel_external_id is None
    assert rows[0].access_token == "long-lived-token"
    assert connection_state(account) == "signup_pending"


@pytest.mark.asyncio
async def test_later_connect_upgrades_pending_row_in_place(orchestrator, graph_api, db):
    stub_long_lived_token(graph_api)
    stub_no_business_discovery(graph_api)
    pending = await orchestrator.connect(db, 7, WHATSAPP, "t1")

    stub_long_lived_token(graph_api, token="long-lived-token-2")
    stub_phone_numbers(graph_api, "WABA-9", "PH-1")
    account = await orchestrator.connect(db, 7, WHATSAPP, "t2", hint_business_account_id="WABA-9")

    rows = await all_accounts(db)
    assert len(rows) == 1
    assert account.id == pending.id
    assert rows[0].status == ChannelStatus.ACTIVE.value
    assert rows[0].business_account_id == "WABA-9"
    assert rows[0].channel_external_id == "PH-1"
    assert rows[0].webhook_url == "https://channels.example.com/api/v1/webhooks/whatsapp/PH-1"
    assert rows[0].display_phone_number == "+1 555-0100"
    assert rows[0].connected_at is not None
    assert rows[0].access_token == "long-lived-token-2"
    assert connection_state(account) == "connected"


@pytest.mark.asyncio
async def test_second_tenant_cannot_claim_connected_channel(orchestrator, graph_api, db):
    stub_long_lived_token(graph_api)
    stub_no_business_discovery(graph_api)
    stub_phone_numbers(graph_api, "WABA-9", "PH-1")
    original = await orchestrator.connect(db, 7, WHATSAPP, "t2", hint_business_account_id="WABA-9")

    stub_long_lived_token(graph_api, token="intruder-token")
    with pytest.raises(ChannelAlreadyClaimed) as exc_info:
        await orchestrator.connect(db, 8, WHATSAPP, "t3", hint_channel_id="PH-1")

    assert exc_info.value.channel_external_id == "PH-1"
    rows = await all_accounts(db)
    assert len(rows) == 1
    assert rows[0].id == original.id
    assert rows[0].tenant_id == 7
    assert rows[0].status == ChannelStatus.ACTIVE.value
    assert rows[0].access_token == "long-lived-token"


@pytest.mark.asyncio
async def test_routing_follows_connect_and_disconnect(orchestrator, graph_api, db):
    stub_long_lived_token(graph_api)
    stub_no_business_discovery(graph_api)
    stub_phone_numbers(graph_api, "WABA-9", "PH-1")
    await orchestrator.connect(db, 7, WHATSAPP, "t2", hint_business_account_id="WABA-9")
    router = WebhookRouter(orchestrator.store)

    routed = await router.route_by_channel_id(db, "PH-1")
    assert routed is not None
    assert routed.tenant_id == 7

    await orchestrator.disconnect(db, 7)

    assert await router.route_by_channel_id(db, "PH-1") is None


@pytest.mark.asyncio
async def test_pending_phone_then_phone_converges_to_one_active_row(orchestrator, graph_api, db):
    stub_long_lived_token(graph_api)
    graph_api.on("WABA-9/phone_numbers", {"data": []})
    first = await orchestrator.connect(db, 7, WHATSAPP, "t1", hint_business_account_id="WABA-9")
    assert first.status == ChannelStatus.PENDING_PHONE.value
    assert connection_state(first) == "phone_pending"

    stub_phone_numbers(graph_api, "WABA-9", "PH-1")
    graph_api.on("debug_token", {"data": {"granular_scopes": [
        {"scope": "whatsapp_business_management", "target_ids": ["WABA-9"]},
    ]}})
    second = await orchestrator.connect(db, 7, WHATSAPP, "t2")

    rows = await all_accounts(db)
    active = [row for row in rows if row.status == ChannelStatus.ACTIVE.value]
    assert len(active) == 1
    assert len(rows) == 1
    assert second.id == first.id


@pytest.mark.asyncio
async def test_business_id_survives_a_less_informed_retry(orchestrator, graph_api, db):
    stub_long_lived_token(graph_api)
    graph_api.on("WABA-9/phone_numbers", {"data": []})
    first = await orchestrator.connect(db, 7, WHATSAPP, "t1", hint_business_account_id="WABA-9")

    graph_api.on("debug_token", {"error": {"message": "down"}}, status_code=500)
    graph_api.on("me/businesses", {"error": {"message": "down"}}, status_code=500)
    second = await orchestrator.connect(db, 7, WHATSAPP, "t2")

    assert second.id == first.id
    assert second.status == ChannelStatus.PENDING_PHONE.value
    assert second.business_account_id == "WABA-9"


@pytest.mark.asyncio
async def test_leftover_pending_row_is_retired_when_channel_already_active(orchestrator, graph_api, db, store):
    existing = await make_account(db)
    await make_account(
        db,
        channel_external_id=None,
        status=ChannelStatus.PENDING_PHONE.value,
        access_token="older-token",
    )

    stub_long_lived_token(graph_api)
    stub_phone_numbers(graph_api, "WABA-9", "PH-1")
    account = await orchestrator.connect(db, 7, WHATSAPP, "t9", hint_business_account_id="WABA-9")

    assert account.id == existing.id
    rows = await all_accounts(db)
    statuses = sorted(row.status for row in rows)
    assert statuses == [ChannelStatus.ACTIVE.value, ChannelStatus.INACTIVE.value]
    assert await store.find_pending(db, 7, WHATSAPP) is None


@pytest.mark.asyncio
async def test_channel_ids_stay_unique_across_tenants(orchestrator, graph_api, db):
    stub_long_lived_token(graph_api)
    stub_no_business_discovery(graph_api)
    stub_phone_numbers(graph_api, "WABA-9", "PH-1")

    await orchestrator.connect(db, 7, WHATSAPP, "a", hint_business_account_id="WABA-9")
    await orchestrator.connect(db, 7, WHATSAPP, "b", hint_business_account_id="WABA-9")
    for tenant_id in (8, 9):
        with pytest.raises(ChannelAlreadyClaimed):
            await orchestrator.connect(db, tenant_id, WHATSAPP, "c", hint_channel_id="PH-1")

    rows = await all_accounts(db)
    assert [row.channel_external_id for row in rows].count("PH-1") == 1


@pytest.mark.asyncio
async def test_exchange_rejection_writes_nothing(orchestrator, graph_api, db):
    existing = await make_account(db)
    updated_at = existing.updated_at
    graph_api.error("oauth/access_token", 400, 190, "Session has expired")

    with pytest.raises(TokenExchangeFailed):
        await orchestrator.connect(db, 7, WHATSAPP, "stale", hint_business_account_id="WABA-9", hint_channel_id="PH-1")

    rows = await all_accounts(db)
    assert len(rows) == 1
    assert rows[0].access_token == "stored-token"
    assert rows[0].updated_at == updated_at
    assert graph_api.called("debug_token") == []


@pytest.mark.asyncio
async def test_exchange_outage_writes_nothing(orchestrator, graph_api, db):
    graph_api.on("oauth/access_token", raises=httpx.ReadTimeout("timed out"))

    with pytest.raises(ProviderUnavailable):
        await orchestrator.connect(db, 7, WHATSAPP, "t1")

    assert await all_accounts(db) == []


@pytest.mark.asyncio
async def test_missing_token_and_code_is_rejected(orchestrator, graph_api, db):
    with pytest.raises(TokenExchangeFailed):
        await orchestrator.connect(db, 7, WHATSAPP)

    assert graph_api.calls == []
    assert await all_accounts(db) == []


@pytest.mark.asyncio
async def test_token_expiry_comes_from_exchange(orchestrator, graph_api, db):
    stub_long_lived_token(graph_api, expires_in=3600)
    stub_no_business_discovery(graph_api)
    before = datetime.utcnow()

    account = await orchestrator.connect(db, 7, WHATSAPP, "t1")

    assert before + timedelta(seconds=3590) <= account.token_expires_at <= datetime.utcnow() + timedelta(seconds=3600)


@pytest.mark.asyncio
async def test_unknown_expiry_is_stored_as_null(orchestrator, graph_api, db):
    stub_long_lived_token(graph_api, expires_in=None)
    stub_no_business_discovery(graph_api)

    account = await orchestrator.connect(db, 7, WHATSAPP, "t1")

    assert account.token_expires_at is None


@pytest.mark.asyncio
async def test_oauth_code_flow_connects(orchestrator, graph_api, db):
    graph_api.on("oauth/access_token", {"access_token": "from-code", "expires_in": 5183944})
    stub_phone_numbers(graph_api, "WABA-9", "PH-1")

    account = await orchestrator.connect(db, 7, WHATSAPP, code="auth-code", hint_business_account_id="WABA-9")

    assert account.status == ChannelStatus.ACTIVE.value
    assert graph_api.called("oauth/access_token")[0]["code"] == "auth-code"


@pytest.mark.asyncio
async def test_facebook_page_token_replaces_user_token(orchestrator, graph_api, db):
    stub_long_lived_token(graph_api, token="user-token")
    graph_api.on("debug_token", {"data": {"granular_scopes": [
        {"scope": "business_management", "target_ids": ["BIZ-1"]},
    ]}})
    graph_api.on("me/accounts", {"data": [
        {"id": "PAGE-1", "name": "Trattoria Roma", "access_token": "page-token"},
    ]})

    account = await orchestrator.connect(db, 7, ChannelProvider.FACEBOOK, "short")

    assert account.status == ChannelStatus.ACTIVE.value
    assert account.channel_external_id == "PAGE-1"
    assert account.business_account_id == "BIZ-1"
    assert account.access_token == "page-token"
    assert account.token_expires_at is None
    assert account.display_name == "Trattoria Roma"
    assert account.webhook_url == "https://channels.example.com/api/v1/webhooks/messenger/PAGE-1"


@pytest.mark.asyncio
async def test_hinted_channel_fetches_metadata(orchestrator, graph_api, db):
    stub_long_lived_token(graph_api)
    graph_api.on("PH-5", {"id": "PH-5", "display_phone_number": "+39 06 1234", "verified_name": "Da Enzo"})

    account = await orchestrator.connect(
        db, 7, WHATSAPP, "t1", hint_business_account_id="WABA-9", hint_channel_id="PH-5"
    )

    assert account.status == ChannelStatus.ACTIVE.value
    assert account.display_name == "Da Enzo"
    assert account.display_phone_number == "+39 06 1234"


@pytest.mark.asyncio
async def test_active_accounts_and_primary(orchestrator, db):
    older = await make_account(db, channel_external_id="PH-1", connected_at=datetime.utcnow() - timedelta(days=2))
    newer = await make_account(db, channel_external_id="PH-2", connected_at=datetime.utcnow() - timedelta(hours=1))
    await make_account(
        db, channel_external_id="PH-3", connected_at=datetime.utcnow(),
        token_expires_at=datetime.utcnow() - timedelta(minutes=1),
    )
    await make_account(db, channel_external_id="PH-4", status=ChannelStatus.INACTIVE.value, is_active=False)

    active = await orchestrator.get_active_accounts(db, 7, WHATSAPP)
    primary = await orchestrator.get_primary_active_account(db, 7)

    assert [account.id for account in active] == [newer.id, older.id]
    assert primary.id == newer.id
    assert await orchestrator.get_primary_active_account(db, 8) is None


def test_build_webhook_url_strips_trailing_slash():
    url = build_webhook_url("https://example.com/", ChannelProvider.FACEBOOK, "PAGE-1")
    assert url == "https://example.com/api/v1/webhooks/messenger/PAGE-1"
