"""
Canonical field normalizers

Pure functions turning vendor-shaped primitives into canonical values. None of
them raise on malformed input: absent or unparsable values come back as
``None``, an empty string, zero or an empty record depending on the field.
"""

import math
import re
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional

from dateutil import parser as date_parser

from .models import Address, GuestName
from .utils.pii_redactor import sanitize_pii

__all__ = [
    "CardBrand",
    "FolioCategory",
    "ReservationStatus",
    "calculate_nights",
    "dig",
    "first_present",
    "last_four",
    "normalize_address",
    "normalize_amount",
    "normalize_card_brand",
    "normalize_currency",
    "normalize_date",
    "normalize_folio_category",
    "normalize_guest_name",
    "normalize_int",
    "normalize_phone",
    "normalize_reservation_status",
    "normalize_stay_date",
    "parse_datetime",
    "pick",
    "sanitize_pii",
]

TWO_PLACES = Decimal("0.01")


class ReservationStatus(str, Enum):
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    PENDING = "pending"
    UNKNOWN = "unknown"


class CardBrand(str, Enum):
    VISA = "Visa"
    MASTERCARD = "Mastercard"
    AMEX = "American Express"
    DISCOVER = "Discover"
    DINERS = "Diners Club"
    JCB = "JCB"
    UNIONPAY = "UnionPay"
    DEBIT = "Debit"
    CASH = "Cash"
    UNKNOWN = "Unknown"


class FolioCategory(str, Enum):
    ROOM = "room"
    TAX = "tax"
    INCIDENTAL = "incidental"
    FOOD_BEVERAGE = "food_beverage"
    PAYMENT = "payment"
    ADJUSTMENT = "adjustment"
    FEE = "fee"
    OTHER = "other"


def dig(mapping: Any, *path: Any, default: Any = None) -> Any:
    """Walk nested dicts/lists, returning ``default`` at the first missing step."""
    current = mapping
    for key in path:
        if isinstance(current, Mapping):
            current = current.get(key)
        elif isinstance(current, (list, tuple)) and isinstance(key, int):
            current = current[key] if -len(current) <= key < len(current) else None
        else:
            return default
        if current is None:
            return default
    return current


def first_present(*values: Any, default: Any = None) -> Any:
    """First value that is neither None nor an empty string."""
    for value in values:
        if value is not None and value != "":
            return value
    return default


def pick(mapping: Any, *keys: str, default: Any = None) -> Any:
    """First present value among ``keys``; tolerates vendors mixing key casings."""
    if not isinstance(mapping, Mapping):
        return default
    return first_present(*(mapping.get(k) for k in keys), default=default)


def _text(mapping: Any, *keys: str) -> str:
    return str(pick(mapping, *keys, default="")).strip()


def _token(value: Any) -> str:
    return re.sub(r"[_\-\s]+", "_", str(value).strip().upper())


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_MONTHS = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}
_EPOCH_RE = re.compile(r"^\d{10,13}$")
_DD_MMM_YY_RE = re.compile(r"^(\d{1,2})[-/\s]([A-Za-z]{3})[-/\s](\d{2,4})$")
_MM_DD_YYYY_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")
_YYYY_MM_DD_RE = re.compile(r"^(\d{4})[/-](\d{1,2})[/-](\d{1,2})$")


def _from_epoch(number: float) -> Optional[datetime]:
    seconds = number if number < 1e12 else number / 1000
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a vendor date/time into an aware UTC datetime, or None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return _from_epoch(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    try:
        if _EPOCH_RE.match(text):
            return _from_epoch(int(text))

        match = _DD_MMM_YY_RE.match(text)
        if match and match.group(2).upper() in _MONTHS:
            year = int(match.group(3))
            if year < 100:
                year += 2000
            return datetime(year, _MONTHS[match.group(2).upper()], int(match.group(1)), tzinfo=timezone.utc)

        match = _MM_DD_YYYY_RE.match(text)
        if match:
            return datetime(int(match.group(3)), int(match.group(1)), int(match.group(2)), tzinfo=timezone.utc)

        match = _YYYY_MM_DD_RE.match(text)
        if match:
            return datetime(int(match.group(1)), int(match.group(2)), int(match.group(3)), tzinfo=timezone.utc)

        return _utc(date_parser.isoparse(text))
    except ValueError:
        pass

    try:
        return _utc(date_parser.parse(text))
    except (ValueError, OverflowError):
        return None


def normalize_date(value: Any) -> Optional[str]:
    """ISO-8601 timestamp in UTC, or None when the input cannot be parsed."""
    parsed = parse_datetime(value)
    return parsed.isoformat() if parsed else None


def normalize_stay_date(value: Any) -> Optional[str]:
    """Calendar date (``YYYY-MM-DD``) for arrival/departure style fields."""
    if isinstance(value, str):
        # Stay dates are local to the property; don't shift them across midnight
        match = re.match(r"^(\d{4})-(\d{2})-(\d{2})", value.strip())
        if match:
            try:
                return date(int(match.group(1)), int(match.group(2)), int(match.group(3))).isoformat()
            except ValueError:
                return None
    parsed = parse_datetime(value)
    return parsed.date().isoformat() if parsed else None


def calculate_nights(check_in: Any, check_out: Any) -> int:
    """Whole nights between two dates; 0 when either is missing, never negative."""
    start = parse_datetime(normalize_stay_date(check_in))
    end = parse_datetime(normalize_stay_date(check_out))
    if start is None or end is None:
        return 0
    days = (end - start).total_seconds() / 86400
    return max(0, int(Decimal(str(days)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------

_NUMERIC_CURRENCIES = {
    "840": "USD", "978": "EUR", "826": "GBP", "124": "CAD", "036": "AUD",
    "36": "AUD", "392": "JPY", "756": "CHF", "484": "MXN", "986": "BRL",
    "156": "CNY", "356": "INR", "702": "SGD", "344": "HKD", "554": "NZD",
    "752": "SEK", "578": "NOK", "208": "DKK", "710": "ZAR", "682": "SAR",
    "784": "AED", "764": "THB", "410": "KRW",
}

_CURRENCY_ALIASES = {
    "DOLLAR": "USD", "DOLLARS": "USD", "US": "USD", "US_DOLLAR": "USD",
    "EURO": "EUR", "EUROS": "EUR",
    "POUND": "GBP", "POUNDS": "GBP", "STERLING": "GBP",
    "YEN": "JPY", "FRANC": "CHF", "FRANCS": "CHF",
    "$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY",
}


def normalize_currency(value: Any, default: str = "USD") -> str:
    """ISO 4217 alpha code"""
    if value is None or value == "":
        return default
    text = str(value).strip().upper()
    if text in _NUMERIC_CURRENCIES:
        return _NUMERIC_CURRENCIES[text]
    if re.fullmatch(r"[A-Z]{3}", text):
        return text
    return _CURRENCY_ALIASES.get(_token(text), _CURRENCY_ALIASES.get(text, default))


def normalize_amount(value: Any, is_cents: bool = False) -> Decimal:
    """
    Fixed-point amount rounded to 2 places.

    Accepts numbers and strings such as ``"$1,234.50"``, ``"(45.00)"`` or the
    European ``"1.234,50"``. Garbage and NaN yield ``Decimal("0.00")``.
    """
    zero = Decimal("0.00")
    if value is None or isinstance(value, bool):
        return zero

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return zero
        amount = Decimal(str(value))
    else:
        text = str(value).strip()
        if not text:
            return zero
        negative = text.startswith("-") or text.startswith("(")
        digits = re.sub(r"[^0-9.,]", "", text)
        if not digits:
            return zero
        if "," in digits and digits.rfind(",") > digits.rfind("."):
            digits = digits.replace(".", "").replace(",", ".")
        else:
            digits = digits.replace(",", "")
        try:
            amount = Decimal(digits)
        except InvalidOperation:
            return zero
        if negative:
            amount = -amount

    if amount.is_nan() or amount.is_infinite():
        return zero
    if is_cents:
        amount = amount / 100
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def normalize_int(value: Any, default: int = 0) -> int:
    """
    Whole count from numbers or text such as ``"2"``, ``"1.0"`` or ``"2 adults"``.

    Values without a leading number (``"n/a"``, ``""``, ``None``) give ``default``.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return default if math.isnan(value) or math.isinf(value) else int(value)
    match = re.match(r"\s*([-+]?\d+(?:\.\d+)?)", str(value))
    if not match:
        return default
    return int(Decimal(match.group(1)))


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

_CARD_BRANDS = {
    CardBrand.VISA: ("VI", "VISA", "VS", "4", "VISD", "VISA_DEBIT"),
    CardBrand.MASTERCARD: ("MC", "MASTERCARD", "MASTER", "MAST", "5", "2", "MASTER_CARD", "MSCD"),
    CardBrand.AMEX: ("AX", "AMEX", "AMERICAN_EXPRESS", "AMERICANEXPRESS", "3", "AXPS", "AE"),
    CardBrand.DISCOVER: ("DS", "DISCOVER", "DISC", "6", "DCVR", "DI"),
    CardBrand.DINERS: ("DC", "DINERS", "DINERS_CLUB", "DINERSCLUB"),
    CardBrand.JCB: ("JC", "JCB"),
    CardBrand.UNIONPAY: ("UP", "UNIONPAY", "CUP", "CHINA_UNIONPAY", "UNION_PAY"),
    CardBrand.DEBIT: ("DB", "DEBIT"),
    CardBrand.CASH: ("CA", "CASH"),
}
_CARD_LOOKUP = {alias: brand.value for brand, aliases in _CARD_BRANDS.items() for alias in aliases}
_CARD_CONTAINS = (
    ("VISA", CardBrand.VISA),
    ("MASTER", CardBrand.MASTERCARD),
    ("AMEX", CardBrand.AMEX),
    ("AMERICAN", CardBrand.AMEX),
    ("DISCOVER", CardBrand.DISCOVER),
    ("DINERS", CardBrand.DINERS),
    ("JCB", CardBrand.JCB),
    ("UNION", CardBrand.UNIONPAY),
)


def normalize_card_brand(value: Any) -> str:
    """Canonical brand name; unrecognized values pass through unchanged."""
    if value is None or str(value).strip() == "":
        return CardBrand.UNKNOWN.value
    token = _token(value)
    if token in _CARD_LOOKUP:
        return _CARD_LOOKUP[token]
    for fragment, brand in _CARD_CONTAINS:
        if fragment in token:
            return brand.value
    return str(value).strip()


def last_four(value: Any) -> str:
    """Last four digits of a masked or full card number."""
    if value is None:
        return ""
    digits = re.sub(r"\D", "", str(value))
    return digits[-4:] if len(digits) >= 4 else digits


# ---------------------------------------------------------------------------
# Reservation status
# ---------------------------------------------------------------------------

_STATUS_SYNONYMS = {
    ReservationStatus.CONFIRMED: (
        "CONFIRMED", "CONFIRM", "CNF", "RESERVED", "DEFINITE", "DEF", "BOOKED",
        "GUARANTEED", "NEW", "ACCEPTED",
    ),
    ReservationStatus.CHECKED_IN: (
        "CHECKED_IN", "CHECKEDIN", "IN_HOUSE", "INHOUSE", "ARRIVED", "CI", "STAY",
        "STAYING", "STARTED",
    ),
    ReservationStatus.CHECKED_OUT: (
        "CHECKED_OUT", "CHECKEDOUT", "DEPARTED", "CO", "COMPLETED", "FINISHED",
        "PROCESSED",
    ),
    ReservationStatus.CANCELLED: (
        "CANCELLED", "CANCELED", "CANCEL", "CXL", "CAN", "VOID", "DECLINED",
    ),
    ReservationStatus.NO_SHOW: ("NO_SHOW", "NOSHOW", "NS"),
    ReservationStatus.PENDING: (
        "PENDING", "TENTATIVE", "TENT", "WAITLIST", "WAITLISTED", "OPTIONAL",
        "REQUESTED", "INQUIRY", "OPEN", "ENQUIRY",
    ),
}
_STATUS_LOOKUP = {alias: status.value for status, aliases in _STATUS_SYNONYMS.items() for alias in aliases}


def normalize_reservation_status(value: Any) -> str:
    if value is None or str(value).strip() == "":
        return ReservationStatus.UNKNOWN.value
    token = _token(value)
    if token in _STATUS_LOOKUP:
        return _STATUS_LOOKUP[token]

    if "CANCEL" in token:
        return ReservationStatus.CANCELLED.value
    if "NO_SHOW" in token or "NOSHOW" in token:
        return ReservationStatus.NO_SHOW.value
    if "CHECK" in token and "OUT" in token:
        return ReservationStatus.CHECKED_OUT.value
    if ("CHECK" in token and "IN" in token) or "HOUSE" in token:
        return ReservationStatus.CHECKED_IN.value
    if "CONFIRM" in token:
        return ReservationStatus.CONFIRMED.value
    if "PEND" in token or "TENT" in token:
        return ReservationStatus.PENDING.value
    return ReservationStatus.UNKNOWN.value


# ---------------------------------------------------------------------------
# Guests
# ---------------------------------------------------------------------------

_FIRST_NAME_KEYS = ("firstName", "first_name", "givenName", "given_name", "nameFirst", "FirstName", "GivenName")
_LAST_NAME_KEYS = ("lastName", "last_name", "surname", "nameLast", "LastName", "Surname", "FamilyName", "familyName")
_FULL_NAME_KEYS = ("fullName", "full_name", "name", "Name", "GuestName", "guestName")


def _split_full_name(text: str) -> GuestName:
    text = text.strip()
    if not text:
        return GuestName()
    if "," in text:
        last, _, first = text.partition(",")
        return GuestName(first_name=first.strip(), last_name=last.strip())
    parts = text.split()
    if len(parts) == 1:
        return GuestName(first_name=parts[0], last_name="")
    return GuestName(first_name=parts[0], last_name=parts[-1])


def normalize_guest_name(value: Any) -> GuestName:
    if value is None:
        return GuestName()
    if isinstance(value, str):
        return _split_full_name(value)
    if not isinstance(value, Mapping):
        return GuestName()

    first = first_present(*(value.get(k) for k in _FIRST_NAME_KEYS))
    last = first_present(*(value.get(k) for k in _LAST_NAME_KEYS))
    if first or last:
        return GuestName(first_name=str(first or "").strip(), last_name=str(last or "").strip())

    full = first_present(*(value.get(k) for k in _FULL_NAME_KEYS))
    if isinstance(full, str):
        return _split_full_name(full)
    if isinstance(full, Mapping):
        return normalize_guest_name(full)
    return GuestName()


def normalize_phone(value: Any) -> Optional[str]:
    """E.164-style number; inputs with fewer than 7 digits yield None."""
    if value is None:
        return None
    text = re.sub(r"[^\d+]", "", str(value))
    digits = text.replace("+", "")
    if len(digits) < 7:
        return None
    if text.startswith("+"):
        return "+" + digits
    if len(digits) == 10:
        return "+1" + digits
    if len(digits) == 11 and digits.startswith("1"):
        return "+" + digits
    return "+" + digits


def normalize_address(value: Any) -> Address:
    """Canonical address; absent input gives an Address of empty strings."""
    if value is None:
        return Address()
    if isinstance(value, str):
        return Address(line1=value.strip())
    if not isinstance(value, Mapping):
        return Address()

    return Address(
        line1=_text(
            value, "line1", "addressLine1", "address1", "Address1", "AddressLine1", "street", "Street", "address_line1"
        ),
        line2=_text(value, "line2", "addressLine2", "address2", "Address2", "AddressLine2", "address_line2"),
        city=_text(value, "city", "City", "cityName", "CityName"),
        state=_text(value, "state", "State", "stateProvince", "stateProv", "region", "StateCode", "state_code"),
        postal_code=_text(value, "postalCode", "postal_code", "zip", "zipCode", "zip_code", "PostalCode", "Zip"),
        country=_text(value, "country", "Country", "countryCode", "CountryCode", "country_code"),
    )


# ---------------------------------------------------------------------------
# Folio
# ---------------------------------------------------------------------------

_FOLIO_SYNONYMS = {
    FolioCategory.ROOM: (
        "ROOM", "ROOM_CHARGE", "ROOM_REVENUE", "ACCOMMODATION", "LODGING", "ROOM_RATE",
        "NIGHT_AUDIT", "RATE", "NIGHTLY_RATE", "ROOM_AND_TAX",
    ),
    FolioCategory.TAX: (
        "TAX", "TAXES", "TAX_CHARGE", "VAT", "CITY_TAX", "STATE_TAX", "OCCUPANCY_TAX",
        "TOURISM_TAX", "SALES_TAX", "GST",
    ),
    FolioCategory.INCIDENTAL: (
        "INCIDENTAL", "MINIBAR", "TELEPHONE", "LAUNDRY", "DRY_CLEANING", "SPA", "PARKING",
        "INTERNET", "WIFI", "MOVIE", "IN_ROOM", "GIFT_SHOP", "MISCELLANEOUS", "MISC",
        "SUNDRY", "OTHER_REVENUE", "VALET", "BUSINESS_CENTER", "GYM", "FITNESS", "POOL",
    ),
    FolioCategory.FOOD_BEVERAGE: (
        "FOOD", "BEVERAGE", "FB", "F_B", "F&B", "FOOD_BEVERAGE", "RESTAURANT", "BAR",
        "DINING", "ROOM_SERVICE", "BREAKFAST", "LUNCH", "DINNER", "CATERING", "BANQUET",
    ),
    FolioCategory.PAYMENT: (
        "PAYMENT", "CASH", "CREDIT_CARD", "CC", "CHECK", "WIRE", "DEPOSIT",
        "ADVANCE_DEPOSIT", "PREPAYMENT", "ONLINE_PAYMENT", "DIRECT_BILL", "AR",
        "ACCOUNTS_RECEIVABLE",
    ),
    FolioCategory.ADJUSTMENT: (
        "ADJUSTMENT", "ADJ", "REBATE", "DISCOUNT", "ALLOWANCE", "CORRECTION", "REFUND",
        "COMP", "COMPLIMENTARY", "CREDIT", "WRITE_OFF",
    ),
    FolioCategory.FEE: (
        "FEE", "RESORT_FEE", "SERVICE_FEE", "EARLY_DEPARTURE", "LATE_CHECKOUT",
        "CANCELLATION_FEE", "NO_SHOW_FEE", "PET_FEE", "EXTRA_PERSON", "DAMAGE", "SMOKING_FEE",
    ),
}
_FOLIO_LOOKUP = {alias: cat.value for cat, aliases in _FOLIO_SYNONYMS.items() for alias in aliases}


def normalize_folio_category(value: Any) -> str:
    if value is None or str(value).strip() == "":
        return FolioCategory.OTHER.value
    token = _token(value)
    if token in _FOLIO_LOOKUP:
        return _FOLIO_LOOKUP[token]

    if "ROOM" in token and "SERVICE" not in token:
        return FolioCategory.ROOM.value
    if "TAX" in token or "VAT" in token:
        return FolioCategory.TAX.value
    if "FOOD" in token or "BEVERAGE" in token or "RESTAURANT" in token:
        return FolioCategory.FOOD_BEVERAGE.value
    if "PAYMENT" in token or "CREDIT_CARD" in token or "DEPOSIT" in token:
        return FolioCategory.PAYMENT.value
    if "ADJ" in token or "REFUND" in token or "DISCOUNT" in token:
        return FolioCategory.ADJUSTMENT.value
    if "FEE" in token or "CHARGE" in token or "SURCHARGE" in token:
        return FolioCategory.FEE.value
    return FolioCategory.OTHER.value
