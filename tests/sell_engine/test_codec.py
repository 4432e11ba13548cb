"""
Exchange Codec Tests.

============================================================
TEST CATEGORIES
============================================================
- Envelope: success/result/message handling
- Decoders: one per endpoint kind
- Signing: nonce, apikey, HMAC-SHA512 header
- Endpoint table: URLs, policies, arguments

============================================================
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone

import pytest

from sell_engine.amount import Amount
from sell_engine.codec import (
    DEFAULT_HEADERS,
    SIGNATURE_HEADER,
    ExchangeCodec,
    RequestSigner,
    append_query,
    decode_envelope,
    make_nonce,
    parse_timestamp,
)
from sell_engine.config import ApiCredentials, ExchangeConfig
from sell_engine.errors import MalformedEnvelope, OperationFailed, SigningUnavailable
from sell_engine.types import (
    AutoUpdatePolicy,
    Balance,
    CancelOrderResult,
    EndpointKind,
    OrderType,
    PlaceOrderResult,
)


BASE = "https://ex.test/api/v1.1"
CREDENTIALS = ApiCredentials(api_key="KEY", api_secret="SECRET")


def body(payload) -> bytes:
    return json.dumps(payload).encode()


def ok(result) -> bytes:
    return body({"success": True, "message": "", "result": result})


@pytest.fixture
def codec():
    signer = RequestSigner(CREDENTIALS, nonce_factory=lambda: "deadbeef")
    return ExchangeCodec(ExchangeConfig(base_url=BASE), signer=signer)


# ============================================================
# ENVELOPE TESTS
# ============================================================

class TestEnvelope:
    """Tests for decode_envelope."""

    def test_success_returns_result(self):
        assert decode_envelope(ok([1, 2])) == [1, 2]

    def test_success_with_null_result(self):
        assert decode_envelope(body({"success": True, "result": None})) is None

    def test_failure_message_is_verbatim(self):
        """Test that the exchange message is the error text."""
        with pytest.raises(OperationFailed) as exc_info:
            decode_envelope(body({"success": False, "message": "INSUFFICIENT_FUNDS"}))

        assert exc_info.value.message == "INSUFFICIENT_FUNDS"
        assert exc_info.value.code == "INSUFFICIENT_FUNDS"

    def test_failure_without_message_is_generic(self):
        with pytest.raises(OperationFailed) as exc_info:
            decode_envelope(body({"success": False}))

        assert exc_info.value.message == OperationFailed.GENERIC_MESSAGE

    @pytest.mark.parametrize("payload", [
        b"not json",
        b"[1, 2]",
        b'{"result": []}',
        b'{"success": "true", "result": []}',
        b'{"success": 1, "result": []}',
        b"\xff\xfe",
    ])
    def test_malformed(self, payload):
        with pytest.raises(MalformedEnvelope):
            decode_envelope(payload)

    def test_numbers_decode_exactly(self):
        """Test that floats are not rounded through binary doubles."""
        result = decode_envelope(b'{"success": true, "result": 0.00000003}')

        assert Amount.parse(result).raw == 3


# ============================================================
# DECODER TESTS
# ============================================================

class TestDecoders:
    """Tests for per-endpoint decoding."""

    def test_markets_filters_inactive(self, codec):
        payload = ok([
            {"MarketName": "BTC-LTC", "IsActive": True, "Created": "2014-02-13T00:00:00"},
            {"MarketName": "BTC-OLD", "IsActive": False, "Created": "2014-02-13T00:00:00"},
            {"MarketName": "BTC-DOGE", "IsActive": True, "Created": "2014-07-09T03:55:48.77"},
        ])

        markets = codec.decode(EndpointKind.MARKETS, payload)

        assert [m.name for m in markets] == ["BTC-LTC", "BTC-DOGE"]
        assert markets[0].url == "https://bittrex.com/Market/Index?MarketName=BTC-LTC"

    def test_market_created_is_utc_converted_to_local(self, codec):
        payload = ok([{"MarketName": "BTC-LTC", "IsActive": True, "Created": "2014-07-09T03:55:48.77"}])

        created = codec.decode(EndpointKind.MARKETS, payload)[0].created

        assert created.tzinfo is not None
        assert created.astimezone(timezone.utc) == datetime(2014, 7, 9, 3, 55, 48, tzinfo=timezone.utc)

    def test_order_book_sorted_and_stable(self, codec):
        """Test ascending rate order with ties kept in exchange order."""
        payload = ok([
            {"Quantity": 1, "Rate": 0.3},
            {"Quantity": 2, "Rate": 0.1},
            {"Quantity": 3, "Rate": 0.1},
        ])

        levels = codec.decode(EndpointKind.ORDER_BOOK_SELL, payload)

        assert [str(l.rate) for l in levels] == ["0.10000000", "0.10000000", "0.30000000"]
        assert [l.quantity.raw for l in levels] == [2 * 10 ** 8, 3 * 10 ** 8, 1 * 10 ** 8]

    def test_order_book_missing_field(self, codec):
        with pytest.raises(MalformedEnvelope):
            codec.decode(EndpointKind.ORDER_BOOK_SELL, ok([{"Quantity": 1}]))

    def test_order_book_not_array(self, codec):
        with pytest.raises(MalformedEnvelope):
            codec.decode(EndpointKind.ORDER_BOOK_SELL, ok({"Quantity": 1}))

    def test_order_book_bad_number(self, codec):
        with pytest.raises(MalformedEnvelope):
            codec.decode(EndpointKind.ORDER_BOOK_SELL, ok([{"Quantity": "1x", "Rate": 1}]))

    def test_open_orders(self, codec):
        payload = ok([
            {
                "Uuid": None,
                "OrderUuid": "a-1",
                "Exchange": "BTC-LTC",
                "OrderType": "LIMIT_SELL",
                "Quantity": 5.0,
                "QuantityRemaining": 4.0,
                "Limit": 0.0001,
                "CommissionPaid": 0.0,
                "Price": 0.0,
                "PricePerUnit": None,
                "Opened": "2014-07-09T03:55:48.77",
                "Closed": None,
                "CancelInitiated": False,
                "ImmediateOrCancel": False,
                "IsConditional": False,
            },
            {"OrderUuid": "a-2", "OrderType": "MARKET_SELL", "Quantity": 1, "QuantityRemaining": 1, "Limit": 1},
        ])

        orders = codec.decode(EndpointKind.OPEN_ORDERS, payload)

        assert orders[0].order_uuid == "a-1"
        assert orders[0].order_type == OrderType.LIMIT_SELL
        assert orders[0].quantity_remaining == Amount.parse("4")
        assert orders[0].closed is None
        assert orders[1].order_type == OrderType.UNKNOWN

    def test_open_orders_null_result(self, codec):
        assert codec.decode(EndpointKind.OPEN_ORDERS, ok(None)) == []

    def test_place_order(self, codec):
        result = codec.decode(EndpointKind.PLACE_ORDER, ok({"uuid": "e606d53c-8d70-11e3-94b5-425861b86ab6"}))

        assert result == PlaceOrderResult(uuid="e606d53c-8d70-11e3-94b5-425861b86ab6")

    def test_get_order(self, codec):
        payload = ok({
            "OrderUuid": "a-1",
            "Exchange": "BTC-LTC",
            "Type": "LIMIT_SELL",
            "Quantity": 10.0,
            "QuantityRemaining": 4.0,
            "Limit": 0.0001,
            "Reserved": 10.0,
            "ReserveRemaining": 4.0,
            "CommissionReserved": 0.0,
            "CommissionPaid": 0.0000015,
            "Price": 0.0006,
            "PricePerUnit": 0.0001,
            "Opened": "2014-07-13T07:45:46.27",
            "Closed": None,
            "IsOpen": True,
            "CancelInitiated": False,
            "ImmediateOrCancel": False,
            "IsConditional": False,
            "Condition": "NONE",
        })

        order = codec.decode(EndpointKind.GET_ORDER, payload)

        assert order.order_type == OrderType.LIMIT_SELL
        assert order.is_open is True
        assert order.filled == Amount.parse("6")
        assert order.commission_paid == Amount.parse("0.0000015")
        assert order.condition == "NONE"

    def test_get_order_requires_is_open(self, codec):
        payload = ok({"OrderUuid": "a", "Type": "LIMIT_SELL", "Quantity": 1, "QuantityRemaining": 1, "Limit": 1})

        with pytest.raises(MalformedEnvelope):
            codec.decode(EndpointKind.GET_ORDER, payload)

    def test_balance(self, codec):
        payload = ok({
            "Currency": "BTC",
            "Balance": 4.21549076,
            "Available": 4.21549076,
            "Pending": 0.0,
            "CryptoAddress": None,
        })

        balance = codec.decode(EndpointKind.BTC_BALANCE, payload)

        assert balance == Balance(
            currency="BTC",
            balance=Amount.parse("4.21549076"),
            available=Amount.parse("4.21549076"),
            pending=Amount.ZERO,
            crypto_address="",
        )

    def test_cancel_needs_no_payload(self, codec):
        assert codec.decode(EndpointKind.CANCEL_ORDER, ok(None)) == CancelOrderResult()

    def test_cancel_failure_propagates(self, codec):
        with pytest.raises(OperationFailed, match="ORDER_NOT_OPEN"):
            codec.decode(EndpointKind.CANCEL_ORDER, body({"success": False, "message": "ORDER_NOT_OPEN"}))

    def test_timestamp_parsing(self):
        assert parse_timestamp("") is None
        with pytest.raises(MalformedEnvelope):
            parse_timestamp("yesterday")


# ============================================================
# SIGNING TESTS
# ============================================================

class TestSigning:
    """Tests for request signing."""

    def test_signed_url_and_header(self, codec):
        url, headers = codec.build_request(EndpointKind.OPEN_ORDERS, "LTC")

        assert url == f"{BASE}/market/getopenorders?market=BTC-LTC&apikey=KEY&nonce=deadbeef"
        expected = hmac.new(b"SECRET", url.encode(), hashlib.sha512).hexdigest()
        assert headers[SIGNATURE_HEADER] == expected

    def test_params_before_credentials(self, codec):
        url, _ = codec.build_request(EndpointKind.GET_ORDER, params={"uuid": "u-1"})

        assert url == f"{BASE}/account/getorder?uuid=u-1&apikey=KEY&nonce=deadbeef"

    def test_place_order_params(self, codec):
        url, _ = codec.build_request(
            EndpointKind.PLACE_ORDER,
            "LTC",
            {"quantity": "10.00000000", "rate": "0.00009999"},
        )

        assert url.startswith(
            f"{BASE}/market/selllimit?market=BTC-LTC&quantity=10.00000000&rate=0.00009999&apikey=KEY"
        )

    def test_public_request_unsigned(self, codec):
        url, headers = codec.build_request(EndpointKind.MARKETS)

        assert url == f"{BASE}/public/getmarkets"
        assert SIGNATURE_HEADER not in headers
        assert headers["Content-Type"] == DEFAULT_HEADERS["Content-Type"]

    def test_signed_request_has_content_type(self, codec):
        _, headers = codec.build_request(EndpointKind.BTC_BALANCE)

        assert headers["Content-Type"] == "application/json; charset=utf-8"

    @pytest.mark.parametrize("credentials", [None, ApiCredentials(), ApiCredentials(api_key="KEY")])
    def test_signing_unavailable(self, credentials):
        codec = ExchangeCodec(ExchangeConfig(base_url=BASE), credentials)

        with pytest.raises(SigningUnavailable):
            codec.build_request(EndpointKind.CANCEL_ORDER, params={"uuid": "x"})

    def test_public_request_without_credentials(self):
        codec = ExchangeCodec(ExchangeConfig(base_url=BASE))

        url, _ = codec.build_request(EndpointKind.ORDER_BOOK_SELL, "LTC")

        assert url == f"{BASE}/public/getorderbook?market=BTC-LTC&type=sell"

    def test_nonce_is_random_hex(self):
        nonces = {make_nonce() for _ in range(20)}

        assert all(len(n) == 8 and int(n, 16) >= 0 for n in nonces)
        assert len(nonces) > 1

    def test_append_query(self):
        assert append_query("https://x/a", {"b": "1"}) == "https://x/a?b=1"
        assert append_query("https://x/a?c=2", {"b": "1"}) == "https://x/a?c=2&b=1"
        assert append_query("https://x/a", {}) == "https://x/a"


# ============================================================
# ENDPOINT TABLE TESTS
# ============================================================

class TestEndpointTable:
    """Tests for the endpoint registry."""

    def test_every_kind_registered(self, codec):
        assert {e.kind for e in codec.endpoints()} == set(EndpointKind)

    @pytest.mark.parametrize("kind, signed, policy, needs_arg", [
        (EndpointKind.MARKETS, False, AutoUpdatePolicy.ALWAYS, False),
        (EndpointKind.ORDER_BOOK_SELL, False, AutoUpdatePolicy.RUNNING, True),
        (EndpointKind.OPEN_ORDERS, True, AutoUpdatePolicy.RUNNING, True),
        (EndpointKind.PLACE_ORDER, True, AutoUpdatePolicy.NEVER, True),
        (EndpointKind.GET_ORDER, True, AutoUpdatePolicy.NEVER, False),
        (EndpointKind.BALANCE, True, AutoUpdatePolicy.RUNNING, True),
        (EndpointKind.BTC_BALANCE, True, AutoUpdatePolicy.RUNNING, False),
        (EndpointKind.CANCEL_ORDER, True, AutoUpdatePolicy.NEVER, False),
    ])
    def test_endpoint_definition(self, codec, kind, signed, policy, needs_arg):
        endpoint = codec.endpoint(kind)

        assert endpoint.signed is signed
        assert endpoint.policy == policy
        assert endpoint.needs_arg is needs_arg

    def test_balance_takes_currency(self, codec):
        url, _ = codec.build_request(EndpointKind.BALANCE, "LTC")

        assert url.startswith(f"{BASE}/account/getbalance?currency=LTC&apikey=KEY")
