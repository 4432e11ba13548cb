"""
Polling Scheduler Tests.

============================================================
TEST CATEGORIES
============================================================
- Registry: initial policies, market selection, running toggle
- Cycle: dispatch, decode, events, batch completion
- One-shot queue: replacement and draining
- Loop: rescheduling on the injected clock, shutdown flush

============================================================
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from core.clock import MockClock
from sell_engine.adapters.mock import MockTransport
from sell_engine.codec import EndpointCodec, ExchangeCodec, decode_balance
from sell_engine.config import ApiCredentials, ExchangeConfig, SchedulerConfig
from sell_engine.errors import TransportError
from sell_engine.scheduler import (
    BatchComplete,
    EndpointFailed,
    EndpointUpdated,
    PollingScheduler,
)
from sell_engine.types import AutoUpdatePolicy, EndpointKind


BASE = "https://ex.test/api/v1.1"
START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

MARKETS = [
    {"MarketName": "BTC-LTC", "IsActive": True, "Created": "2014-02-13T00:00:00"},
]


def ok(result):
    return {"success": True, "message": "", "result": result}


def make_transport() -> MockTransport:
    transport = MockTransport()
    transport.set_json("/public/getmarkets", ok(MARKETS))
    transport.set_json("/public/getorderbook", ok([{"Quantity": 1, "Rate": 0.0001}]))
    transport.set_json("/market/getopenorders", ok([]))
    transport.set_json("/account/getbalance", ok({"Currency": "LTC", "Balance": 1, "Available": 1}))
    transport.set_json("/account/getorder", ok({
        "OrderUuid": "u-1", "Type": "LIMIT_SELL", "Quantity": 1,
        "QuantityRemaining": 1, "Limit": 0.0001, "IsOpen": True,
    }))
    transport.set_json("/market/cancel", ok(None))
    return transport


def make_scheduler(transport, credentials=ApiCredentials("KEY", "SECRET"), clock=None) -> PollingScheduler:
    codec = ExchangeCodec(ExchangeConfig(base_url=BASE), credentials)
    return PollingScheduler(
        codec,
        transport,
        clock=clock or MockClock(START),
        config=SchedulerConfig(refresh_delay_seconds=3.0),
    )


class EventRecorder:
    """Collects scheduler events."""

    def __init__(self, scheduler: PollingScheduler):
        self.events: List = []
        scheduler.add_listener(self.events.append)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


@pytest.fixture
def transport():
    return make_transport()


@pytest.fixture
def scheduler(transport):
    return make_scheduler(transport)


# ============================================================
# REGISTRY TESTS
# ============================================================

class TestRegistry:
    """Tests for endpoint registration and policies."""

    def test_initial_state(self, scheduler):
        """Test only ALWAYS endpoints start enabled."""
        enabled = {kind for kind, on in scheduler.enabled_snapshot().items() if on}

        assert enabled == {EndpointKind.MARKETS}
        assert {reg.kind for reg in scheduler.registrations()} == set(EndpointKind)
        assert scheduler.result(EndpointKind.ORDER_BOOK_SELL) == []
        assert scheduler.result(EndpointKind.GET_ORDER) is None

    def test_select_market_sets_argument(self, scheduler):
        scheduler.select_market("LTC")

        assert scheduler.registration(EndpointKind.ORDER_BOOK_SELL).arg == "LTC"
        assert scheduler.registration(EndpointKind.PLACE_ORDER).arg == "LTC"
        assert scheduler.registration(EndpointKind.GET_ORDER).arg == ""

    def test_select_market_does_not_enable_running_endpoints(self, scheduler):
        scheduler.select_market("LTC")

        assert not scheduler.is_enabled(EndpointKind.ORDER_BOOK_SELL)

    def test_set_running_toggles_running_endpoints(self, scheduler):
        scheduler.select_market("LTC")
        scheduler.set_running(True)

        enabled = {kind for kind, on in scheduler.enabled_snapshot().items() if on}
        assert enabled == {
            EndpointKind.MARKETS,
            EndpointKind.ORDER_BOOK_SELL,
            EndpointKind.OPEN_ORDERS,
            EndpointKind.BALANCE,
            EndpointKind.BTC_BALANCE,
        }

    def test_start_stop_symmetry(self, scheduler):
        """Test non-running endpoints are untouched by a start/stop round trip."""
        scheduler.select_market("LTC")
        before = scheduler.enabled_snapshot()

        scheduler.set_running(True)
        scheduler.set_running(False)

        assert scheduler.enabled_snapshot() == before

    def test_empty_market_disables_argument_endpoints(self, scheduler):
        scheduler.select_market("LTC")
        scheduler.set_running(True)

        scheduler.select_market("")

        assert not scheduler.is_enabled(EndpointKind.ORDER_BOOK_SELL)
        assert not scheduler.is_enabled(EndpointKind.BALANCE)
        assert scheduler.is_enabled(EndpointKind.BTC_BALANCE)

    @pytest.mark.asyncio
    async def test_market_selected_policy(self, transport):
        """Test MARKET_SELECTED endpoints follow the selected market, not running."""
        codec = ExchangeCodec(ExchangeConfig(base_url=BASE), ApiCredentials("KEY", "SECRET"))
        codec.register(EndpointCodec(
            EndpointKind.BALANCE,
            "/account/getbalance?currency={}",
            decode_balance,
            signed=True,
            policy=AutoUpdatePolicy.MARKET_SELECTED,
        ))
        scheduler = PollingScheduler(codec, transport, clock=MockClock(START))
        assert not scheduler.is_enabled(EndpointKind.BALANCE)

        scheduler.select_market("LTC")
        assert scheduler.is_enabled(EndpointKind.BALANCE)
        assert not scheduler.is_enabled(EndpointKind.ORDER_BOOK_SELL)

        await scheduler.run_cycle()
        assert scheduler.result(EndpointKind.BALANCE).currency == "LTC"
        scheduler.set_running(False)
        assert scheduler.is_enabled(EndpointKind.BALANCE)

        scheduler.select_market("")
        assert not scheduler.is_enabled(EndpointKind.BALANCE)

    @pytest.mark.asyncio
    async def test_select_market_resets_first_response(self, scheduler):
        scheduler.select_market("LTC")
        scheduler.set_running(True)
        await scheduler.run_cycle()
        assert scheduler.first_response_received(EndpointKind.ORDER_BOOK_SELL)

        scheduler.select_market("DOGE")

        assert not scheduler.first_response_received(EndpointKind.ORDER_BOOK_SELL)
        assert scheduler.first_response_received(EndpointKind.MARKETS)


# ============================================================
# CYCLE TESTS
# ============================================================

class TestCycle:
    """Tests for one polling cycle."""

    @pytest.mark.asyncio
    async def test_dispatches_enabled_endpoints(self, scheduler, transport):
        recorder = EventRecorder(scheduler)

        event = await scheduler.run_cycle()

        assert [r.path for r in transport.requests] == ["/api/v1.1/public/getmarkets"]
        assert event == BatchComplete(cycle=1, dispatched=1)
        assert recorder.events[-1] == event
        assert isinstance(recorder.events[0], EndpointUpdated)
        assert scheduler.first_response_received(EndpointKind.MARKETS)
        assert scheduler.result(EndpointKind.MARKETS)[0].name == "BTC-LTC"

    @pytest.mark.asyncio
    async def test_business_error_keeps_previous_result(self, scheduler, transport):
        await scheduler.run_cycle()
        previous = scheduler.result(EndpointKind.MARKETS)
        transport.set_json("/public/getmarkets", {"success": False, "message": "INVALID_MARKET"})
        recorder = EventRecorder(scheduler)

        await scheduler.run_cycle()

        assert recorder.of_type(EndpointFailed) == [
            EndpointFailed(kind=EndpointKind.MARKETS, message="INVALID_MARKET")
        ]
        assert scheduler.result(EndpointKind.MARKETS) is previous

    @pytest.mark.asyncio
    async def test_transport_error_becomes_event(self, scheduler, transport):
        transport.set_error("/public/getmarkets", TransportError("HTTP 503 Service Unavailable", status=503))
        recorder = EventRecorder(scheduler)

        event = await scheduler.run_cycle()

        assert recorder.of_type(EndpointFailed)[0].message == "HTTP 503 Service Unavailable"
        assert event.dispatched == 1
        assert not scheduler.first_response_received(EndpointKind.MARKETS)

    @pytest.mark.asyncio
    async def test_malformed_reply_becomes_event(self, scheduler, transport):
        transport.set_response("/public/getmarkets", b"<html>")
        recorder = EventRecorder(scheduler)

        await scheduler.run_cycle()

        assert recorder.of_type(EndpointFailed)[0].kind == EndpointKind.MARKETS

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_event(self, scheduler, transport):
        transport.set_error("/public/getmarkets", RuntimeError("boom"))
        recorder = EventRecorder(scheduler)

        await scheduler.run_cycle()

        assert recorder.of_type(EndpointFailed) == [
            EndpointFailed(kind=EndpointKind.MARKETS, message="boom")
        ]
        assert len(recorder.of_type(BatchComplete)) == 1

    @pytest.mark.asyncio
    async def test_events_in_arrival_order_then_batch(self, scheduler, transport):
        """Test replies are delivered as they arrive and the batch event comes last."""
        async def slow_markets(url):
            await asyncio.sleep(0.02)
            return b'{"success": true, "result": []}'

        transport.set_response("/public/getmarkets", slow_markets)
        scheduler.select_market("LTC")
        scheduler.set_running(True)
        recorder = EventRecorder(scheduler)

        await scheduler.run_cycle()

        kinds = [e.kind for e in recorder.events if isinstance(e, EndpointUpdated)]
        assert kinds[-1] == EndpointKind.MARKETS
        assert len(kinds) == 5
        assert isinstance(recorder.events[-1], BatchComplete)

    @pytest.mark.asyncio
    async def test_zero_request_cycle_still_completes(self, scheduler, transport):
        scheduler.registration(EndpointKind.MARKETS).enabled = False
        recorder = EventRecorder(scheduler)

        event = await scheduler.run_cycle()

        assert event.dispatched == 0
        assert recorder.events == [event]
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_signing_unavailable_sends_nothing(self, transport):
        scheduler = make_scheduler(transport, credentials=None)
        scheduler.submit(EndpointKind.GET_ORDER, {"uuid": "u-1"})
        recorder = EventRecorder(scheduler)

        await scheduler.run_cycle()

        failed = recorder.of_type(EndpointFailed)
        assert [e.kind for e in failed] == [EndpointKind.GET_ORDER]
        assert "credentials" in failed[0].message
        assert transport.requests_for("/account/getorder") == []

    @pytest.mark.asyncio
    async def test_stale_reply_not_marked_fresh(self, scheduler, transport):
        """Test a reply for a previously selected market does not set first-response."""
        scheduler.select_market("LTC")
        scheduler.set_running(True)
        transport.hold()

        cycle = asyncio.ensure_future(scheduler.run_cycle())
        for _ in range(3):
            await asyncio.sleep(0)
        scheduler.select_market("DOGE")
        transport.release()
        await cycle

        assert not scheduler.first_response_received(EndpointKind.ORDER_BOOK_SELL)
        assert scheduler.first_response_received(EndpointKind.BTC_BALANCE)

    @pytest.mark.asyncio
    async def test_next_cycle_at(self):
        clock = MockClock(START)
        scheduler = make_scheduler(make_transport(), clock=clock)

        await scheduler.run_cycle()

        assert scheduler.next_cycle_at == START + timedelta(seconds=3)


# ============================================================
# ONE-SHOT QUEUE TESTS
# ============================================================

class TestOneShotQueue:
    """Tests for submitted one-shot requests."""

    @pytest.mark.asyncio
    async def test_later_submission_replaces_earlier(self, scheduler, transport):
        scheduler.submit(EndpointKind.GET_ORDER, {"uuid": "a"})
        scheduler.submit(EndpointKind.GET_ORDER, {"uuid": "b"})

        await scheduler.run_cycle()

        sent = transport.requests_for("/account/getorder")
        assert len(sent) == 1
        assert sent[0].params["uuid"] == "b"

    @pytest.mark.asyncio
    async def test_queue_drained_at_dispatch(self, scheduler, transport):
        scheduler.submit(EndpointKind.CANCEL_ORDER, {"uuid": "a"})

        await scheduler.run_cycle()
        assert scheduler.pending_requests() == {}

        transport.reset_requests()
        await scheduler.run_cycle()
        assert transport.requests_for("/market/cancel") == []

    @pytest.mark.asyncio
    async def test_one_shot_signed_and_updates_slot(self, scheduler, transport):
        scheduler.submit(EndpointKind.GET_ORDER, {"uuid": "u-1"})
        recorder = EventRecorder(scheduler)

        await scheduler.run_cycle()

        sent = transport.requests_for("/account/getorder")[0]
        assert sent.params["apikey"] == "KEY"
        assert "apisign" in sent.headers
        assert scheduler.result(EndpointKind.GET_ORDER).order_uuid == "u-1"
        assert any(isinstance(e, EndpointUpdated) and e.kind == EndpointKind.GET_ORDER for e in recorder.events)


# ============================================================
# LOOP TESTS
# ============================================================

class TestLoop:
    """Tests for start/shutdown."""

    @pytest.mark.asyncio
    async def test_cycles_separated_by_refresh_delay(self, transport):
        clock = MockClock(START)
        scheduler = make_scheduler(transport, clock=clock)

        def on_event(event):
            if isinstance(event, BatchComplete) and event.cycle == 3:
                asyncio.ensure_future(scheduler.shutdown())

        scheduler.add_listener(on_event)

        await asyncio.wait_for(scheduler.start(), timeout=5)

        assert scheduler.cycle == 3
        assert len(clock.sleeps) >= 2
        assert all(s == 3.0 for s in clock.sleeps)
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_shutdown_flushes_queue(self, scheduler, transport):
        scheduler.submit(EndpointKind.CANCEL_ORDER, {"uuid": "u-1"})
        recorder = EventRecorder(scheduler)

        await scheduler.shutdown()

        assert [r.path for r in transport.requests] == ["/api/v1.1/market/cancel"]
        assert recorder.of_type(EndpointUpdated)[0].kind == EndpointKind.CANCEL_ORDER

    @pytest.mark.asyncio
    async def test_start_after_shutdown_returns(self, scheduler, transport):
        await scheduler.shutdown()

        await asyncio.wait_for(scheduler.start(), timeout=1)

        assert transport.requests == []
