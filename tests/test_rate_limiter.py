"""
Tests for the sliding-window rate limiter
"""

import asyncio

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from kirikou.src.core.exceptions import AdmissionError
from kirikou.src.core.rate_limiter import DEFAULT_IDENTITY, SlidingWindowRateLimiter


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class BrokenCollection:
    async def find_one_and_update(self, *args, **kwargs):
        raise ServerSelectionTimeoutError("no servers available")

    async def create_index(self, *args, **kwargs):
        raise ServerSelectionTimeoutError("no servers available")


def admit(limiter, identity="10.0.0.1"):
    return asyncio.run(limiter.admit(identity))


class TestAdmission:
    """Window accounting for a single identity"""

    def test_first_request_admitted(self, fake_collection):
        """A fresh identity is admitted and spends its budget"""
        limiter = SlidingWindowRateLimiter(fake_collection, limit=1, window_seconds=10, clock=Clock(100.0))

        result = admit(limiter)

        assert result.allowed is True
        assert result.limit == 1
        assert result.remaining == 0
        assert result.reset_at == 110.0

    def test_second_request_in_window_throttled(self, fake_collection):
        """1 request / 10 s: a second request 1 s later is throttled"""
        clock = Clock(100.0)
        limiter = SlidingWindowRateLimiter(fake_collection, limit=1, window_seconds=10, clock=clock)

        assert admit(limiter).allowed is True
        clock.now = 101.0
        result = admit(limiter)

        assert result.allowed is False
        assert result.remaining == 0

    def test_rejected_attempt_is_rolled_back(self, fake_collection):
        """Throttled attempts do not consume budget"""
        clock = Clock(100.0)
        limiter = SlidingWindowRateLimiter(fake_collection, limit=1, window_seconds=10, clock=clock)

        admit(limiter)
        clock.now = 102.0
        admit(limiter)
        admit(limiter)

        assert fake_collection.docs["kirikou:10.0.0.1:10"]["count"] == 1

    def test_previous_window_weighs_at_boundary(self, fake_collection):
        """Right after the boundary the previous window still counts fully"""
        clock = Clock(105.0)
        limiter = SlidingWindowRateLimiter(fake_collection, limit=1, window_seconds=10, clock=clock)

        admit(limiter)
        clock.now = 110.0

        assert admit(limiter).allowed is False

    def test_previous_window_decays(self, fake_collection):
        """Halfway through the next window floor(1 * 0.5) == 0 of it remains"""
        clock = Clock(105.0)
        limiter = SlidingWindowRateLimiter(fake_collection, limit=1, window_seconds=10, clock=clock)

        admit(limiter)
        clock.now = 115.0

        assert admit(limiter).allowed is True

    def test_higher_limit(self, fake_collection):
        clock = Clock(200.0)
        limiter = SlidingWindowRateLimiter(fake_collection, limit=3, window_seconds=60, clock=clock)

        results = [admit(limiter).allowed for _ in range(4)]

        assert results == [True, True, True, False]


class TestIdentities:
    """Counters are kept per caller identity"""

    def test_identities_are_independent(self, fake_collection):
        limiter = SlidingWindowRateLimiter(fake_collection, limit=1, window_seconds=10, clock=Clock(100.0))

        assert admit(limiter, "10.0.0.1").allowed is True
        assert admit(limiter, "10.0.0.2").allowed is True
        assert admit(limiter, "10.0.0.1").allowed is False

    def test_missing_identity_uses_default(self, fake_collection):
        """No resolvable client address falls back to 127.0.0.1"""
        limiter = SlidingWindowRateLimiter(fake_collection, limit=1, window_seconds=10, clock=Clock(100.0))

        admit(limiter, None)

        assert f"kirikou:{DEFAULT_IDENTITY}:10" in fake_collection.docs

    def test_counter_documents_expire(self, fake_collection):
        limiter = SlidingWindowRateLimiter(fake_collection, limit=1, window_seconds=10, clock=Clock(100.0))

        admit(limiter)

        expires_at = fake_collection.docs["kirikou:10.0.0.1:10"]["expires_at"]
        assert expires_at.timestamp() > 120.0


class TestFailurePolicy:
    """Backend failures are fail-closed"""

    def test_backend_failure_raises_admission_error(self):
        limiter = SlidingWindowRateLimiter(BrokenCollection(), clock=Clock(100.0))

        with pytest.raises(AdmissionError):
            admit(limiter)

    def test_index_setup_failure_raises_admission_error(self):
        limiter = SlidingWindowRateLimiter(BrokenCollection())

        with pytest.raises(AdmissionError):
            asyncio.run(limiter.ensure_indexes())

    def test_ensure_indexes_creates_ttl_index(self, fake_collection):
        limiter = SlidingWindowRateLimiter(fake_collection)

        asyncio.run(limiter.ensure_indexes())

        assert fake_collection.indexes == [("expires_at", {"expireAfterSeconds": 0})]

    @pytest.mark.parametrize("limit, window", [(0, 10), (1, 0)])
    def test_invalid_configuration(self, fake_collection, limit, window):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(fake_collection, limit=limit, window_seconds=window)
