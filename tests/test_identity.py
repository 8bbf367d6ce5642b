"""
Tests for the anonymous identity bootstrap.
"""
import asyncio

import pytest

from reportcard.errors import StoreError, StoreErrorKind
from reportcard.identity import AnonymousIdentityBootstrap, BackoffPolicy, IdentityState

from conftest import FakeAuth


def network_error():
    return StoreError(StoreErrorKind.NETWORK, "connection reset")


class SessionAppearsLater(FakeAuth):
    """Sign-in hangs, but the session shows up on the re-check."""

    async def get_session_user(self):
        self.session_calls += 1
        await asyncio.sleep(0)
        return "late-user" if self.session_calls > 1 else None


# =============================================================================
# Coalescing and memoization
# =============================================================================

class TestSingleResolution:
    def test_concurrent_callers_share_one_sign_in(self, sleeper):
        auth = FakeAuth(outcomes=["user-1"], delay=0.01)
        bootstrap = AnonymousIdentityBootstrap(auth, sleep=sleeper.sleep)

        async def run():
            return await asyncio.gather(*[bootstrap.ensure() for _ in range(20)])

        identities = asyncio.run(run())

        assert auth.sign_in_calls == 1
        assert {i.id for i in identities} == {"user-1"}
        assert bootstrap.state == IdentityState.ESTABLISHED

    def test_established_identity_is_memoized(self, sleeper):
        auth = FakeAuth(outcomes=["user-1", "user-2"])
        bootstrap = AnonymousIdentityBootstrap(auth, sleep=sleeper.sleep)

        async def run():
            first = await bootstrap.ensure()
            second = await bootstrap.ensure()
            return first, second

        first, second = asyncio.run(run())
        assert first.id == second.id == "user-1"
        assert auth.sign_in_calls == 1

    def test_existing_session_skips_sign_in(self, sleeper):
        auth = FakeAuth(session_user="existing-user")
        bootstrap = AnonymousIdentityBootstrap(auth, sleep=sleeper.sleep)

        identity = asyncio.run(bootstrap.ensure())

        assert identity.id == "existing-user"
        assert auth.sign_in_calls == 0

    def test_status_reports_loading_until_settled(self, sleeper):
        bootstrap = AnonymousIdentityBootstrap(FakeAuth(outcomes=["user-1"]), sleep=sleeper.sleep)
        assert bootstrap.status().loading is True
        assert bootstrap.status().identity is None

        asyncio.run(bootstrap.ensure())

        assert bootstrap.status().to_dict() == {"identity": {"id": "user-1"}, "loading": False}


# =============================================================================
# Retries
# =============================================================================

class TestRetries:
    def test_failure_then_success(self, sleeper):
        auth = FakeAuth(outcomes=[network_error(), "user-2"])
        bootstrap = AnonymousIdentityBootstrap(auth, sleep=sleeper.sleep)

        identity = asyncio.run(bootstrap.ensure())

        assert identity.id == "user-2"
        assert auth.sign_in_calls == 2
        assert sleeper.delays == [0.5]

    def test_exhaustion_is_unavailable_and_memoized(self, sleeper):
        auth = FakeAuth(outcomes=[network_error(), network_error(), network_error()])
        bootstrap = AnonymousIdentityBootstrap(auth, sleep=sleeper.sleep)

        async def run():
            first = await bootstrap.ensure()
            second = await bootstrap.ensure()
            return first, second

        first, second = asyncio.run(run())

        assert first is None and second is None
        assert auth.sign_in_calls == 3
        assert sleeper.delays == [0.5, 1.5]
        assert bootstrap.state == IdentityState.UNAVAILABLE
        assert bootstrap.status().loading is False

    def test_reset_allows_new_resolution(self, sleeper):
        auth = FakeAuth(outcomes=[network_error()])
        bootstrap = AnonymousIdentityBootstrap(auth, backoff=BackoffPolicy([0]), sleep=sleeper.sleep)

        assert asyncio.run(bootstrap.ensure()) is None

        bootstrap.reset()
        auth.outcomes = ["user-3"]
        identity = asyncio.run(bootstrap.ensure())

        assert identity.id == "user-3"
        assert auth.sign_in_calls == 2

    def test_initial_delay_is_honoured(self, sleeper):
        auth = FakeAuth(outcomes=["user-1"])
        bootstrap = AnonymousIdentityBootstrap(auth, backoff=BackoffPolicy([0.25, 1]), sleep=sleeper.sleep)

        asyncio.run(bootstrap.ensure())

        assert sleeper.delays == [0.25]

    def test_timeout_then_session_recheck(self, sleeper):
        auth = SessionAppearsLater(outcomes=["never-seen"], delay=1.0)
        bootstrap = AnonymousIdentityBootstrap(auth, create_timeout=0.01, sleep=sleeper.sleep)

        identity = asyncio.run(bootstrap.ensure())

        assert identity.id == "late-user"
        assert auth.sign_in_calls == 1
        assert sleeper.delays == []


class TestBackoffPolicy:
    def test_attempts_follow_delays(self):
        policy = BackoffPolicy([0, 0.5, 1.5])
        assert policy.max_attempts == 3
        assert [policy.delay_before(n) for n in (1, 2, 3)] == [0.0, 0.5, 1.5]

    def test_requires_an_attempt(self):
        with pytest.raises(ValueError):
            BackoffPolicy([])
