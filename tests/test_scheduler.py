from datetime import datetime, timedelta

import pytest

from services.channelServices.token_verifier import TokenVerifier
from services.scheduler import ChannelVerificationScheduler
from tests.conftest import make_account


@pytest.mark.asyncio
async def test_run_once_revokes_rejected_tokens(graph_client, graph_api, store, session_factory, db):
    stale = await make_account(db, channel_external_id="PH-1", last_verified_at=datetime.utcnow() - timedelta(days=2))
    graph_api.error("me", 401, 190)
    scheduler = ChannelVerificationScheduler(
        verifier=TokenVerifier(graph_client, store),
        session_factory=session_factory,
        max_age=timedelta(hours=24),
    )

    summary = await scheduler.run_once()

    assert summary["checked"] == 1
    assert summary["valid"] == 0
    assert summary["revoked"] == [stale.id]


@pytest.mark.asyncio
async def test_run_once_counts_outage_as_deferred(graph_client, graph_api, store, session_factory, db):
    await make_account(db, channel_external_id="PH-1")
    graph_api.on("me", {"error": {"message": "down"}}, status_code=500)
    scheduler = ChannelVerificationScheduler(
        verifier=TokenVerifier(graph_client, store),
        session_factory=session_factory,
    )

    summary = await scheduler.run_once()

    assert summary["checked"] == 1
    assert summary["valid"] == 0
    assert summary["revoked"] == []
    assert summary["unavailable"] == 1
