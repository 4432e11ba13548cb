"""
Sell Engine - Fixed-Point Amount.

============================================================
PURPOSE
============================================================
Exact currency quantities as signed 64-bit integers scaled by 10^8
(one unit = one satoshi).

RULES:
- Addition, subtraction and comparison stay in the integer domain
- Multiplication and division go through a float intermediate and are
  rounded to the nearest representable value (ties to even)
- Parsing is digit by digit, never locale dependent
- Formatting always renders exactly 8 fractional digits

============================================================
"""

from decimal import Decimal
from typing import Any, Union

from .errors import InvalidNumericFormat, DivisionByZero


DECIMALS = 8
SCALE = 10 ** DECIMALS

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


def _check_range(raw: int, source: Any) -> int:
    if raw < INT64_MIN or raw > INT64_MAX:
        raise InvalidNumericFormat(f"Value out of range: {source!r}")
    return raw


def _parse_digits(text: str) -> int:
    """Parse a decimal string into a raw scaled integer."""
    if not text:
        raise InvalidNumericFormat("Empty numeric value")

    negative = text[0] == "-"
    body = text[1:] if negative else text
    if not body:
        raise InvalidNumericFormat(f"Invalid numeric value: {text!r}")

    int_part = 0
    frac_part = 0
    frac_digits = 0
    in_fraction = False
    seen_digit = False

    for char in body:
        if char in ".,":
            if in_fraction:
                raise InvalidNumericFormat(f"Invalid numeric value: {text!r}")
            in_fraction = True
            continue
        if char < "0" or char > "9":
            raise InvalidNumericFormat(f"Invalid numeric value: {text!r}")
        seen_digit = True
        if not in_fraction:
            int_part = int_part * 10 + (ord(char) - ord("0"))
        elif frac_digits < DECIMALS:
            frac_part = frac_part * 10 + (ord(char) - ord("0"))
            frac_digits += 1
        # digits past the 8th fractional place are truncated

    if not seen_digit:
        raise InvalidNumericFormat(f"Invalid numeric value: {text!r}")

    frac_part *= 10 ** (DECIMALS - frac_digits)
    raw = int_part * SCALE + frac_part
    return _check_range(-raw if negative else raw, text)


class Amount:
    """
    Immutable fixed-point currency amount.

    Equality, ordering and hashing use the raw scaled integer.
    Comparisons also accept plain ``0`` so guards like ``amount <= 0``
    read naturally.
    """

    __slots__ = ("_raw",)

    def __init__(self, raw: int = 0):
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise TypeError(f"Amount raw value must be int, got {type(raw).__name__}")
        object.__setattr__(self, "_raw", _check_range(raw, raw))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Amount is immutable")

    # --------------------------------------------------------
    # CONSTRUCTION
    # --------------------------------------------------------

    @classmethod
    def parse(cls, value: Union[str, int, float, Decimal, None]) -> "Amount":
        """
        Parse a decimal string or a JSON numeric value.

        Args:
            value: "1.5", "0,25", 3, 0.1, Decimal("2.00000001") or None

        Returns:
            Amount (None parses as zero)

        Raises:
            InvalidNumericFormat: On any character other than digits,
                a single '.'/',' separator and a leading '-'
        """
        if value is None:
            return cls(0)
        if isinstance(value, bool):
            raise InvalidNumericFormat(f"Invalid numeric value: {value!r}")
        if isinstance(value, int):
            return cls(_check_range(value * SCALE, value))
        if isinstance(value, float):
            if value != value or value in (float("inf"), float("-inf")):
                raise InvalidNumericFormat(f"Invalid numeric value: {value!r}")
            return cls(_parse_digits(format(value, f".{DECIMALS}f")))
        if isinstance(value, Decimal):
            if not value.is_finite():
                raise InvalidNumericFormat(f"Invalid numeric value: {value!r}")
            return cls(_parse_digits(format(value, "f")))
        if isinstance(value, str):
            return cls(_parse_digits(value))
        raise InvalidNumericFormat(f"Invalid numeric value: {value!r}")

    @classmethod
    def from_raw(cls, raw: int) -> "Amount":
        return cls(raw)

    # --------------------------------------------------------
    # ACCESSORS
    # --------------------------------------------------------

    @property
    def raw(self) -> int:
        """Scaled integer value (satoshis)."""
        return self._raw

    def to_decimal_string(self) -> str:
        """Render with exactly 8 fractional digits, e.g. '1.50000000'."""
        sign = "-" if self._raw < 0 else ""
        int_part, frac_part = divmod(abs(self._raw), SCALE)
        return f"{sign}{int_part}.{frac_part:0{DECIMALS}d}"

    def to_float(self) -> float:
        return float(self.to_decimal_string())

    def to_decimal(self) -> Decimal:
        return Decimal(self.to_decimal_string())

    # --------------------------------------------------------
    # ARITHMETIC
    # --------------------------------------------------------

    def multiply(self, other: "Amount") -> "Amount":
        """Product rounded to the nearest satoshi."""
        return Amount(int(round(float(self._raw) * float(other.raw) / SCALE)))

    def divide(self, divisor: "Amount") -> "Amount":
        """
        Quotient rounded to the nearest satoshi.

        Raises:
            DivisionByZero: If the divisor is zero
        """
        if divisor.raw == 0:
            raise DivisionByZero(
                f"Division of {self.to_decimal_string()} by {divisor.to_decimal_string()}"
            )
        return Amount(int(round(float(self._raw) * SCALE / float(divisor.raw))))

    def __add__(self, other: "Amount") -> "Amount":
        if not isinstance(other, Amount):
            return NotImplemented
        return Amount(self._raw + other.raw)

    def __sub__(self, other: "Amount") -> "Amount":
        if not isinstance(other, Amount):
            return NotImplemented
        return Amount(self._raw - other.raw)

    def __neg__(self) -> "Amount":
        return Amount(-self._raw)

    def __abs__(self) -> "Amount":
        return Amount(abs(self._raw))

    def __bool__(self) -> bool:
        return self._raw != 0

    # --------------------------------------------------------
    # COMPARISON
    # --------------------------------------------------------

    @staticmethod
    def _raw_of(other: Any):
        if isinstance(other, Amount):
            return other.raw
        if other == 0 and not isinstance(other, bool):
            return 0
        return None

    def __eq__(self, other: Any) -> bool:
        raw = self._raw_of(other)
        if raw is None:
            return NotImplemented
        return self._raw == raw

    def __lt__(self, other: Any) -> bool:
        raw = self._raw_of(other)
        if raw is None:
            return NotImplemented
        return self._raw < raw

    def __le__(self, other: Any) -> bool:
        raw = self._raw_of(other)
        if raw is None:
            return NotImplemented
        return self._raw <= raw

    def __gt__(self, other: Any) -> bool:
        raw = self._raw_of(other)
        if raw is None:
            return NotImplemented
        return self._raw > raw

    def __ge__(self, other: Any) -> bool:
        raw = self._raw_of(other)
        if raw is None:
            return NotImplemented
        return self._raw >= raw

    def __hash__(self) -> int:
        return hash(self._raw)

    def __str__(self) -> str:
        return self.to_decimal_string()

    def __repr__(self) -> str:
        return f"Amount('{self.to_decimal_string()}')"


Amount.ZERO = Amount(0)
# one price increment
Amount.TICK = Amount(1)


def parse_amount(value: Union[str, int, float, Decimal, None]) -> Amount:
    return Amount.parse(value)


def multiply(a: Amount, b: Amount) -> Amount:
    return a.multiply(b)


def divide(a: Amount, b: Amount) -> Amount:
    return a.divide(b)
