"""Tests for the domain verification poller."""
import pytest

from wisp.services.verification import poll_until_verified
from wisp.utils.exceptions import ExternalServiceError


@pytest.mark.asyncio
async def test_returns_true_on_first_verified_check(hosting, sleep):
    assert await poll_until_verified(hosting, "prj_123", "my-app", sleep=sleep) is True
    assert hosting.verify_domain.await_count == 1
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_polls_with_fixed_interval_until_verified(hosting, sleep):
    hosting.verify_domain.side_effect = [False, False, True]

    assert await poll_until_verified(hosting, "prj_123", "my-app", interval=2.0, sleep=sleep) is True
    assert hosting.verify_domain.await_count == 3
    assert sleep.calls == [2.0, 2.0]


@pytest.mark.asyncio
async def test_exhaustion_returns_false_without_raising(hosting, sleep):
    hosting.verify_domain.return_value = False

    verified = await poll_until_verified(hosting, "prj_123", "my-app", max_attempts=10, interval=2.0, sleep=sleep)

    assert verified is False
    assert hosting.verify_domain.await_count == 10
    assert sleep.calls == [2.0] * 9


@pytest.mark.asyncio
async def test_check_errors_count_as_unverified(hosting, sleep):
    hosting.verify_domain.side_effect = [ExternalServiceError("hosting", "Vercel 500"), True]

    assert await poll_until_verified(hosting, "prj_123", "my-app", sleep=sleep) is True
    assert hosting.verify_domain.await_count == 2
