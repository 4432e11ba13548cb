"""
Sell Engine - Exchange Codec.

============================================================
PURPOSE
============================================================
Typed request/response definitions for every exchange endpoint.

For each EndpointKind the codec knows:
- the URL template (optionally taking the selected market or currency)
- whether the request must be signed
- the auto-update policy the scheduler applies to it
- how to decode the reply into a typed result

REPLY ENVELOPE:
    {"success": true,  "result": ...}
    {"success": false, "message": "INSUFFICIENT_FUNDS"}

SIGNING:
    url += apikey=<key>&nonce=<random hex>
    header apisign = hex(HMAC-SHA512(secret, url))

============================================================
"""

import hashlib
import hmac
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

from .amount import Amount
from .config import ApiCredentials, ExchangeConfig
from .errors import (
    InvalidNumericFormat,
    MalformedEnvelope,
    OperationFailed,
    SigningUnavailable,
)
from .types import (
    AutoUpdatePolicy,
    Balance,
    CancelOrderResult,
    EndpointKind,
    Market,
    OpenOrder,
    Order,
    OrderBookLevel,
    OrderType,
    PlaceOrderResult,
)


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "apisign"
NONCE_BYTES = 4
DEFAULT_HEADERS = {"Content-Type": "application/json; charset=utf-8"}


# ============================================================
# ENVELOPE
# ============================================================

def decode_envelope(payload: bytes) -> Any:
    """
    Unwrap the {success, result|message} envelope.

    Args:
        payload: Raw reply body

    Returns:
        The "result" field (may be None)

    Raises:
        MalformedEnvelope: Body is not a JSON object with a boolean "success"
        OperationFailed: success is false; message is the exchange text
    """
    try:
        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        reply = json.loads(text, parse_float=Decimal)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedEnvelope("Error parsing reply string", cause=e)

    if not isinstance(reply, dict):
        raise MalformedEnvelope("Invalid reply object")

    success = reply.get("success")
    if not isinstance(success, bool):
        raise MalformedEnvelope('Reply has no boolean "success" field')

    if not success:
        message = reply.get("message")
        raise OperationFailed(message if isinstance(message, str) and message else None)

    return reply.get("result")


# ============================================================
# FIELD HELPERS
# ============================================================

_MISSING = object()


def _field(obj: Mapping[str, Any], name: str, required: bool = True) -> Any:
    if not isinstance(obj, dict):
        raise MalformedEnvelope(f"Expected object, got {type(obj).__name__}")
    value = obj.get(name, _MISSING)
    if value is _MISSING:
        if required:
            raise MalformedEnvelope(f"Missing field: {name}")
        return None
    return value


def _str(obj: Mapping[str, Any], name: str, required: bool = True) -> str:
    value = _field(obj, name, required)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise MalformedEnvelope(f"Field {name} is not a string")
    return value


def _bool(obj: Mapping[str, Any], name: str, required: bool = True) -> bool:
    value = _field(obj, name, required)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise MalformedEnvelope(f"Field {name} is not a boolean")
    return value


def _amount(obj: Mapping[str, Any], name: str, required: bool = True) -> Amount:
    value = _field(obj, name, required)
    try:
        return Amount.parse(value)
    except InvalidNumericFormat as e:
        raise MalformedEnvelope(f"Field {name}: {e.message}", cause=e)


def parse_timestamp(text: str) -> Optional[datetime]:
    """
    Parse an exchange timestamp ("2014-08-19T07:57:56.893").

    The value is UTC on the wire and returned in local time.
    """
    if not text:
        return None
    try:
        parsed = datetime.strptime(text[:19], "%Y-%m-%dT%H:%M:%S")
    except ValueError as e:
        raise MalformedEnvelope(f"Invalid timestamp: {text!r}", cause=e)
    return parsed.replace(tzinfo=timezone.utc).astimezone()


def _timestamp(obj: Mapping[str, Any], name: str, required: bool = True) -> Optional[datetime]:
    return parse_timestamp(_str(obj, name, required))


def _array(result: Any) -> List[Any]:
    if not isinstance(result, list):
        raise MalformedEnvelope("Result is not an array")
    return result


def _object(result: Any) -> Dict[str, Any]:
    if not isinstance(result, dict):
        raise MalformedEnvelope("Result is not an object")
    return result


# ============================================================
# RESULT DECODERS
# ============================================================

def decode_markets(result: Any, config: ExchangeConfig) -> List[Market]:
    """Active markets only."""
    markets = []
    for item in _array(result):
        if not _bool(item, "IsActive"):
            continue
        name = _str(item, "MarketName")
        markets.append(Market(
            name=name,
            created=_timestamp(item, "Created"),
            url=config.market_display_url.format(name),
        ))
    return markets


def decode_order_book(result: Any, config: ExchangeConfig) -> List[OrderBookLevel]:
    """Sell side, ascending by rate; equal rates keep exchange order."""
    levels = [
        OrderBookLevel(
            quantity=_amount(item, "Quantity"),
            rate=_amount(item, "Rate"),
        )
        for item in _array(result)
    ]
    return sorted(levels, key=lambda level: level.rate.raw)


def decode_open_orders(result: Any, config: ExchangeConfig) -> List[OpenOrder]:
    if result is None:
        return []
    return [
        OpenOrder(
            uuid=_str(item, "Uuid", required=False),
            order_uuid=_str(item, "OrderUuid"),
            exchange=_str(item, "Exchange", required=False),
            order_type=OrderType.from_exchange(_str(item, "OrderType")),
            quantity=_amount(item, "Quantity"),
            quantity_remaining=_amount(item, "QuantityRemaining"),
            limit=_amount(item, "Limit"),
            commission_paid=_amount(item, "CommissionPaid", required=False),
            price=_amount(item, "Price", required=False),
            price_per_unit=_amount(item, "PricePerUnit", required=False),
            opened=_timestamp(item, "Opened", required=False),
            closed=_timestamp(item, "Closed", required=False),
            cancel_initiated=_bool(item, "CancelInitiated", required=False),
            immediate_or_cancel=_bool(item, "ImmediateOrCancel", required=False),
            is_conditional=_bool(item, "IsConditional", required=False),
        )
        for item in _array(result)
    ]


def decode_place_order(result: Any, config: ExchangeConfig) -> PlaceOrderResult:
    if result is None:
        return PlaceOrderResult()
    return PlaceOrderResult(uuid=_str(_object(result), "uuid"))


def decode_order(result: Any, config: ExchangeConfig) -> Order:
    if result is None:
        return Order()
    obj = _object(result)
    return Order(
        order_uuid=_str(obj, "OrderUuid"),
        exchange=_str(obj, "Exchange", required=False),
        order_type=OrderType.from_exchange(_str(obj, "Type")),
        quantity=_amount(obj, "Quantity"),
        quantity_remaining=_amount(obj, "QuantityRemaining"),
        limit=_amount(obj, "Limit"),
        reserved=_amount(obj, "Reserved", required=False),
        reserve_remaining=_amount(obj, "ReserveRemaining", required=False),
        commission_paid=_amount(obj, "CommissionPaid", required=False),
        price=_amount(obj, "Price", required=False),
        price_per_unit=_amount(obj, "PricePerUnit", required=False),
        opened=_timestamp(obj, "Opened", required=False),
        closed=_timestamp(obj, "Closed", required=False),
        is_open=_bool(obj, "IsOpen"),
        cancel_initiated=_bool(obj, "CancelInitiated", required=False),
        immediate_or_cancel=_bool(obj, "ImmediateOrCancel", required=False),
        is_conditional=_bool(obj, "IsConditional", required=False),
        condition=_str(obj, "Condition", required=False),
    )


def decode_balance(result: Any, config: ExchangeConfig) -> Balance:
    if result is None:
        return Balance()
    obj = _object(result)
    return Balance(
        currency=_str(obj, "Currency"),
        balance=_amount(obj, "Balance"),
        available=_amount(obj, "Available"),
        pending=_amount(obj, "Pending", required=False),
        crypto_address=_str(obj, "CryptoAddress", required=False),
    )


def decode_cancel_order(result: Any, config: ExchangeConfig) -> CancelOrderResult:
    return CancelOrderResult()


# ============================================================
# REQUEST SIGNING
# ============================================================

def append_query(url: str, params: Mapping[str, str]) -> str:
    """Append query parameters, keeping any query already in the URL."""
    if not params:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


def make_nonce() -> str:
    return secrets.token_hex(NONCE_BYTES)


class RequestSigner:
    """
    Signs private requests with explicitly supplied credentials.

    Raises SigningUnavailable before anything is sent when the key or
    secret is missing.
    """

    def __init__(
        self,
        credentials: Optional[ApiCredentials],
        nonce_factory: Callable[[], str] = make_nonce,
    ):
        self._credentials = credentials
        self._nonce_factory = nonce_factory

    @property
    def available(self) -> bool:
        return self._credentials is not None and self._credentials.is_complete

    def sign(self, url: str) -> Tuple[str, Dict[str, str]]:
        """
        Append apikey and nonce, then sign the final URL.

        Returns:
            (signed_url, extra_headers)
        """
        if not self.available:
            raise SigningUnavailable("No API credentials - private functions disabled.")

        signed_url = append_query(url, {
            "apikey": self._credentials.api_key,
            "nonce": self._nonce_factory(),
        })
        signature = hmac.new(
            self._credentials.api_secret.encode(),
            signed_url.encode(),
            hashlib.sha512,
        ).hexdigest()
        return signed_url, {SIGNATURE_HEADER: signature}


# ============================================================
# ENDPOINT CODEC
# ============================================================

Decoder = Callable[[Any, ExchangeConfig], Any]


@dataclass(frozen=True)
class EndpointCodec:
    """Request/response definition of one endpoint."""

    kind: EndpointKind
    path: str
    """Path under the API root; '{}' marks the caller-supplied argument."""

    decoder: Decoder
    signed: bool = False
    policy: AutoUpdatePolicy = AutoUpdatePolicy.NEVER
    returns_list: bool = False

    @property
    def needs_arg(self) -> bool:
        return "{}" in self.path

    def empty_result(self) -> Any:
        """Result slot value before the first successful reply."""
        return [] if self.returns_list else None

    def url(self, base_url: str, arg: str = "") -> str:
        path = self.path.format(arg) if self.needs_arg else self.path
        return f"{base_url}{path}"


class ExchangeCodec:
    """
    Registry of endpoint codecs behind one decode/build interface.

    Example:
        codec = ExchangeCodec(ExchangeConfig(), credentials)
        url, headers = codec.build_request(EndpointKind.GET_ORDER, params={"uuid": uid})
        order = codec.decode(EndpointKind.GET_ORDER, body)
    """

    def __init__(
        self,
        config: Optional[ExchangeConfig] = None,
        credentials: Optional[ApiCredentials] = None,
        signer: Optional[RequestSigner] = None,
    ):
        self._config = config or ExchangeConfig()
        self._signer = signer or RequestSigner(credentials)

        prefix = self._config.market_prefix
        quote = self._config.quote_currency
        self._endpoints: Dict[EndpointKind, EndpointCodec] = {}
        for endpoint in (
            EndpointCodec(
                EndpointKind.MARKETS,
                "/public/getmarkets",
                decode_markets,
                policy=AutoUpdatePolicy.ALWAYS,
                returns_list=True,
            ),
            EndpointCodec(
                EndpointKind.ORDER_BOOK_SELL,
                f"/public/getorderbook?market={prefix}{{}}&type=sell",
                decode_order_book,
                policy=AutoUpdatePolicy.RUNNING,
                returns_list=True,
            ),
            EndpointCodec(
                EndpointKind.OPEN_ORDERS,
                f"/market/getopenorders?market={prefix}{{}}",
                decode_open_orders,
                signed=True,
                policy=AutoUpdatePolicy.RUNNING,
                returns_list=True,
            ),
            EndpointCodec(
                EndpointKind.PLACE_ORDER,
                f"/market/selllimit?market={prefix}{{}}",
                decode_place_order,
                signed=True,
            ),
            EndpointCodec(
                EndpointKind.GET_ORDER,
                "/account/getorder",
                decode_order,
                signed=True,
            ),
            EndpointCodec(
                EndpointKind.BALANCE,
                "/account/getbalance?currency={}",
                decode_balance,
                signed=True,
                policy=AutoUpdatePolicy.RUNNING,
            ),
            EndpointCodec(
                EndpointKind.BTC_BALANCE,
                f"/account/getbalance?currency={quote}",
                decode_balance,
                signed=True,
                policy=AutoUpdatePolicy.RUNNING,
            ),
            EndpointCodec(
                EndpointKind.CANCEL_ORDER,
                "/market/cancel",
                decode_cancel_order,
                signed=True,
            ),
        ):
            self.register(endpoint)

    @property
    def config(self) -> ExchangeConfig:
        return self._config

    def endpoint(self, kind: EndpointKind) -> EndpointCodec:
        return self._endpoints[kind]

    def endpoints(self) -> List[EndpointCodec]:
        return list(self._endpoints.values())

    def register(self, endpoint: EndpointCodec) -> None:
        """Add an endpoint, replacing any codec already held for its kind."""
        self._endpoints[endpoint.kind] = endpoint

    def build_request(
        self,
        kind: EndpointKind,
        arg: str = "",
        params: Optional[Mapping[str, str]] = None,
    ) -> Tuple[str, Dict[str, str]]:
        """
        Build the final URL and headers for a request.

        Raises:
            SigningUnavailable: Signed endpoint without credentials
        """
        endpoint = self._endpoints[kind]
        url = append_query(endpoint.url(self._config.base_url, arg), params or {})
        headers = dict(DEFAULT_HEADERS)
        if endpoint.signed:
            url, extra = self._signer.sign(url)
            headers.update(extra)
        return url, headers

    def decode(self, kind: EndpointKind, payload: bytes) -> Any:
        """
        Decode a raw reply for an endpoint.

        Raises:
            MalformedEnvelope: Envelope or payload shape is wrong
            OperationFailed: Exchange reported success=false
        """
        endpoint = self._endpoints[kind]
        return endpoint.decoder(decode_envelope(payload), self._config)
