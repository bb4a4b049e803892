"""Session admission control tests — origin gate, message quota, auth, sweep.

Learn: AdmissionControl takes a clock, so the 60 s window and the
5 minute block are tested by advancing a FakeClock instead of sleeping.
"""

import pytest

from conftest import TEST_API_KEY, TEST_ORIGIN
from muta.config import Settings
from muta.errors import (
    AuthenticationError,
    ClientBlockedError,
    OriginRejectedError,
    RateLimitExceededError,
)
from muta.events.types import ORDERS_GROUP
from muta.realtime.admission import POLICY_VIOLATION, AdmissionControl
from muta.realtime.sessions import SessionRegistry, SessionState


@pytest.fixture()
def registry():
    return SessionRegistry()


@pytest.fixture()
def admission(registry, clock):
    return AdmissionControl(registry, allowed_origins=[TEST_ORIGIN], clock=clock)


@pytest.fixture()
def secured(registry, clock):
    return AdmissionControl(
        registry, allowed_origins=[TEST_ORIGIN], api_key=TEST_API_KEY, clock=clock
    )


# ─── Origin gate ────────────────────────────────────────


def test_allowed_origin_admitted(admission, registry, transport_factory):
    session = admission.admit(transport_factory(), TEST_ORIGIN)
    assert session.session_id in registry
    assert session.origin_validated is True
    assert session.state == SessionState.AUTHENTICATED


@pytest.mark.parametrize("origin", [None, "", "http://evil.example", "http://localhost:4000"])
def test_unknown_origin_rejected(admission, registry, transport_factory, origin):
    with pytest.raises(OriginRejectedError):
        admission.admit(transport_factory(), origin)
    assert len(registry) == 0


def test_development_allows_any_localhost_port(registry, transport_factory):
    dev = AdmissionControl(registry, allowed_origins=[TEST_ORIGIN], development=True)
    dev.admit(transport_factory(), "http://localhost:5173")
    with pytest.raises(OriginRejectedError):
        dev.admit(transport_factory(), "http://localhost.evil.example")
    assert len(registry) == 1


def test_from_settings(registry):
    cfg = Settings(environment="production", cors_origins=["https://app.example"], ws_max_messages=5)
    admission = AdmissionControl.from_settings(registry, cfg)
    assert admission.development is False
    assert admission.max_messages == 5
    assert admission.origin_allowed("https://app.example")
    assert not admission.origin_allowed("http://localhost:3000")


# ─── Message quota ──────────────────────────────────────


def test_thirty_messages_pass_then_block(admission, transport_factory, clock):
    session = admission.admit(transport_factory(), TEST_ORIGIN)

    for _ in range(30):
        admission.check_message(session)
        clock.advance(1)

    with pytest.raises(RateLimitExceededError):
        admission.check_message(session)
    assert session.state == SessionState.BLOCKED


def test_blocked_messages_not_counted(admission, transport_factory, clock):
    session = admission.admit(transport_factory(), TEST_ORIGIN)
    for _ in range(30):
        admission.check_message(session)
    with pytest.raises(RateLimitExceededError):
        admission.check_message(session)
    count = session.message_count

    clock.advance(60)
    with pytest.raises(ClientBlockedError):
        admission.check_message(session)
    assert session.message_count == count


def test_block_expiry_resets_counter(admission, transport_factory, clock):
    session = admission.admit(transport_factory(), TEST_ORIGIN)
    for _ in range(31):
        try:
            admission.check_message(session)
        except RateLimitExceededError:
            pass

    clock.advance(301)
    admission.check_message(session)

    assert session.message_count == 1
    assert session.blocked_until is None
    assert session.state == SessionState.AUTHENTICATED


def test_window_rolls_over(admission, transport_factory, clock):
    session = admission.admit(transport_factory(), TEST_ORIGIN)
    for _ in range(30):
        admission.check_message(session)

    clock.advance(61)
    admission.check_message(session)
    assert session.message_count == 1


# ─── Subscribe / shared secret ──────────────────────────


def test_no_secret_subscribe_needs_no_key(admission, transport_factory):
    session = admission.admit(transport_factory(), TEST_ORIGIN)
    assert admission.subscribe(session) is False  # already authenticated at admit
    assert session.subscribed


def test_secret_required_when_configured(secured, transport_factory):
    session = secured.admit(transport_factory(), TEST_ORIGIN)
    assert session.state == SessionState.OPEN

    for bad in (None, "short", "wrong-key-but-long-enough"):
        with pytest.raises(AuthenticationError):
            secured.subscribe(session, api_key=bad)

    assert not session.subscribed
    assert not session.closed


def test_valid_secret_authenticates_once(secured, transport_factory):
    session = secured.admit(transport_factory(), TEST_ORIGIN)

    assert secured.subscribe(session, api_key=TEST_API_KEY) is True
    assert session.state == SessionState.AUTHENTICATED
    assert ORDERS_GROUP in session.groups

    secured.unsubscribe(session)
    assert not session.subscribed
    # Re-subscribing needs no key and doesn't count as a new authentication
    assert secured.subscribe(session) is False


# ─── Close / sweep ──────────────────────────────────────


def test_close_is_idempotent(admission, registry, transport_factory):
    session = admission.admit(transport_factory(), TEST_ORIGIN)
    admission.subscribe(session)

    admission.close(session)
    admission.close(session)

    assert session.state == SessionState.CLOSED
    assert session.groups == set()
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_sweep_evicts_idle_sessions(admission, registry, transport_factory, clock):
    idle_t, active_t = transport_factory(), transport_factory()
    idle = admission.admit(idle_t, TEST_ORIGIN)
    active = admission.admit(active_t, TEST_ORIGIN)

    clock.advance(hours=23)
    admission.touch(active)
    clock.advance(hours=2)

    assert await admission.sweep() == 1
    assert idle.closed and not active.closed
    assert idle_t.closed_with == (POLICY_VIOLATION, "idle")
    assert active_t.closed_with is None
    assert list(registry) == [active]


@pytest.mark.asyncio
async def test_sweep_evicts_expired_blocks(admission, transport_factory, clock):
    t = transport_factory()
    session = admission.admit(t, TEST_ORIGIN)
    for _ in range(31):
        try:
            admission.check_message(session)
        except RateLimitExceededError:
            pass

    assert await admission.sweep() == 0  # block still running
    clock.advance(301)
    assert await admission.sweep() == 1
    assert t.closed_with == (POLICY_VIOLATION, "stale_block")
