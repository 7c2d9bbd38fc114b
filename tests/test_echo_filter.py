import asyncio

import pytest

from udp_ws_bridge.echo_filter import ECHO_WINDOW_MS, SWEEP_INTERVAL_MS, EchoFilter
from tests.utils import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def echo_filter(clock):
    return EchoFilter(clock=clock)


def test_defaults():
    f = EchoFilter()
    assert f.window_ms == ECHO_WINDOW_MS == 100
    assert f.sweep_interval_ms == SWEEP_INTERVAL_MS == 50


def test_registered_payload_is_suppressed(echo_filter):
    echo_filter.register(b"\x01\x02\x03")

    assert echo_filter.should_suppress(b"\x01\x02\x03")
    assert not echo_filter.should_suppress(b"\x09\x09\x09")


def test_match_is_exact_bytes(echo_filter):
    echo_filter.register(b"\x01\x02\x03")

    assert not echo_filter.should_suppress(b"\x01\x02")
    assert not echo_filter.should_suppress(b"\x01\x02\x03\x00")
    assert echo_filter.should_suppress(bytearray([1, 2, 3]))


def test_check_does_not_consume(echo_filter):
    """Every subscriber must see the same answer during the window."""
    echo_filter.register(b"abc")

    assert echo_filter.should_suppress(b"abc")
    assert echo_filter.should_suppress(b"abc")
    assert echo_filter.should_suppress(b"abc")
    assert len(echo_filter) == 1


def test_entry_survives_until_window_elapses(echo_filter, clock):
    echo_filter.register(b"abc")

    clock.advance(0.099)
    assert echo_filter.sweep() == 0
    assert echo_filter.should_suppress(b"abc")

    clock.advance(0.002)
    assert echo_filter.sweep() == 1
    assert not echo_filter.should_suppress(b"abc")


def test_expiry_only_happens_on_sweep(echo_filter, clock):
    echo_filter.register(b"abc")
    clock.advance(5.0)

    assert echo_filter.should_suppress(b"abc")
    echo_filter.sweep()
    assert not echo_filter.should_suppress(b"abc")


def test_sweep_accepts_explicit_time(echo_filter, clock):
    echo_filter.register(b"abc")

    assert echo_filter.sweep(clock.now + 0.05) == 0
    assert echo_filter.sweep(clock.now + 0.11) == 1


def test_sweep_removes_only_old_entries(echo_filter, clock):
    echo_filter.register(b"old")
    clock.advance(0.08)
    echo_filter.register(b"new")
    clock.advance(0.03)

    assert echo_filter.sweep() == 1
    assert not echo_filter.should_suppress(b"old")
    assert echo_filter.should_suppress(b"new")


def test_reregister_refreshes_timestamp(echo_filter, clock):
    echo_filter.register(b"abc")
    clock.advance(0.08)
    echo_filter.register(b"abc")
    clock.advance(0.05)

    echo_filter.sweep()
    assert echo_filter.should_suppress(b"abc")
    assert len(echo_filter) == 1

    clock.advance(0.06)
    echo_filter.sweep()
    assert not echo_filter.should_suppress(b"abc")


def test_empty_payload_can_be_tracked(echo_filter):
    echo_filter.register(b"")
    assert echo_filter.should_suppress(b"")


def test_stats(echo_filter, clock):
    echo_filter.register(b"a")
    echo_filter.register(b"b")
    echo_filter.should_suppress(b"a")
    echo_filter.should_suppress(b"zzz")
    clock.advance(1.0)
    echo_filter.sweep()

    stats = echo_filter.get_stats()
    assert stats["tracked"] == 0
    assert stats["registered"] == 2
    assert stats["suppress_hits"] == 1
    assert stats["expired"] == 2
    assert stats["window_ms"] == 100


@pytest.mark.asyncio
async def test_background_sweep_expires_entries():
    f = EchoFilter()
    f.start()
    try:
        f.register(b"abc")
        assert f.should_suppress(b"abc")

        # window + one sweep interval, with slack
        await asyncio.sleep(0.25)
        assert not f.should_suppress(b"abc")
    finally:
        await f.stop()


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent():
    f = EchoFilter()
    f.start()
    f.start()
    await f.stop()
    await f.stop()


def test_suppress_hits_count_every_check(echo_filter):
    echo_filter.register(b"dmx")
    # one looped-back datagram checked by three clients
    for _ in range(3):
        assert echo_filter.should_suppress(b"dmx")

    assert echo_filter.get_stats()["suppress_hits"] == 3
