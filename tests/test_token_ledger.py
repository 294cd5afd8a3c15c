import pytest

from askai.core.token_ledger import SqlTokenLedger, usage_stats_from_row

from .conftest import memory_engine


async def record(ledger, application_id=1, tokens=10, success=True, request_id="r1"):
    await ledger.record(
        application_id=application_id,
        event_id=0,
        user_id="tester",
        tokens=tokens,
        event_type="ParticipantNQL",
        success=success,
        error=None if success else "failed",
        request_id=request_id,
    )


@pytest.mark.asyncio
async def test_stats_for_unknown_application_are_zero(ledger):
    stats = await ledger.stats(99)

    assert stats.total_tokens == 0
    assert stats.total_requests == 0
    assert stats.remaining_tokens == ledger.token_limit


@pytest.mark.asyncio
async def test_stats_aggregate_per_application(ledger):
    await record(ledger, tokens=10, request_id="a")
    await record(ledger, tokens=5, success=False, request_id="b")
    await record(ledger, application_id=2, tokens=1000, request_id="c")

    stats = await ledger.stats(1)

    assert stats.total_tokens == 15
    assert stats.total_requests == 2
    assert stats.successful_requests == 1
    assert stats.failed_requests == 1
    assert stats.remaining_tokens == ledger.token_limit - 15


@pytest.mark.asyncio
async def test_check_quota_denies_at_limit():
    ledger = SqlTokenLedger(token_limit=20, engine=memory_engine())
    try:
        assert (await ledger.check_quota(1)).allowed

        await record(ledger, tokens=20)
        decision = await ledger.check_quota(1)

        assert decision.allowed is False
        assert "20/20" in decision.message
        assert (await ledger.check_quota(2)).allowed
    finally:
        await ledger.dispose()


@pytest.mark.asyncio
async def test_zero_limit_disables_quota():
    ledger = SqlTokenLedger(token_limit=0, engine=memory_engine())
    try:
        await record(ledger, tokens=10**6)

        assert (await ledger.check_quota(1)).allowed
        assert (await ledger.stats(1)).remaining_tokens is None
    finally:
        await ledger.dispose()


def test_usage_stats_from_row_handles_nulls():
    stats = usage_stats_from_row((None, 0, None), token_limit=100)

    assert stats.total_tokens == 0
    assert stats.failed_requests == 0
    assert stats.remaining_tokens == 100
