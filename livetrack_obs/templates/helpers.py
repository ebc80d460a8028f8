"""
Value helpers available to output templates.

Includes the ``UNDEFINED`` sentinel used for absent fields, the text and
number coercions applied by the expression evaluator, and the formatting
functions templates can call.
"""
import json
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional


METERS_PER_MILE = 1609.344
METERS_PER_FOOT = 0.3048
MPS_TO_MPH = 2.2369362920544025
MPS_TO_KPH = 3.6

SECONDS_PER_DAY = 86400


class Undefined:
    """Marker for a field that is not present in the data scope."""

    _instance: Optional["Undefined"] = None

    def __new__(cls) -> "Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __str__(self) -> str:
        return "undefined"


UNDEFINED = Undefined()


def is_missing(value: Any) -> bool:
    """True for None and ``UNDEFINED``."""
    return value is None or value is UNDEFINED


def to_number(value: Any) -> float:
    """
    Coerce a value to a number.

    Missing values and unparseable strings become NaN so arithmetic on
    them never raises.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip()) if value.strip() else 0
        except ValueError:
            return math.nan
    return math.nan


def to_text(value: Any) -> str:
    """Render a value the way it appears in an output file."""
    if value is UNDEFINED:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join("" if is_missing(v) else to_text(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=to_text)
    return str(value)


def truthy(value: Any) -> bool:
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def round_half_up(value: Any) -> Any:
    """Round to the nearest integer, halves rounding towards +infinity."""
    number = to_number(value)
    if math.isnan(number) or math.isinf(number):
        return number
    return math.floor(number + 0.5)


def _floor(value: Any) -> Any:
    number = to_number(value)
    if math.isnan(number) or math.isinf(number):
        return number
    return math.floor(number)


def _ceil(value: Any) -> Any:
    number = to_number(value)
    if math.isnan(number) or math.isinf(number):
        return number
    return math.ceil(number)


def _abs(value: Any) -> Any:
    return abs(to_number(value))


def _min(*values: Any) -> Any:
    numbers = [to_number(v) for v in values]
    if not numbers:
        return math.inf
    if any(math.isnan(n) for n in numbers):
        return math.nan
    return min(numbers)


def _max(*values: Any) -> Any:
    numbers = [to_number(v) for v in values]
    if not numbers:
        return -math.inf
    if any(math.isnan(n) for n in numbers):
        return math.nan
    return max(numbers)


def _int(value: Any) -> Any:
    number = to_number(value)
    if math.isnan(number) or math.isinf(number):
        return number
    return int(number)


def _float(value: Any) -> float:
    return float(to_number(value))


def _len(value: Any) -> int:
    if is_missing(value):
        return 0
    try:
        return len(value)
    except TypeError:
        return 0


def pad_num(value: Any) -> str:
    """
    Zero-pad a number to at least two digits.

    Missing values render as ``"00"``.
    """
    if is_missing(value):
        return "00"
    return to_text(value).rjust(2, "0")


def decimal_to_time_string(value: Any) -> str:
    """
    Convert decimal minutes to ``m:ss``, or ``hh:mm:ss`` from 60 minutes on.

    Minutes are only zero-padded when an hour component is shown.
    Missing or non-numeric input renders as ``"0:00"``.
    """
    if is_missing(value):
        return "0:00"
    number = to_number(value)
    if math.isnan(number) or math.isinf(number):
        return "0:00"

    whole = math.floor(number)
    minutes = whole
    seconds = math.floor(60 * (number % 1) + 0.5)
    if seconds == 60:
        minutes += 1
        seconds = 0

    # Format follows the whole minutes before carrying: 59.999 is "60:00".
    if whole >= 60:
        hours = minutes // 60
        minutes = minutes % 60
        return f"{pad_num(hours)}:{pad_num(minutes)}:{pad_num(seconds)}"

    return f"{minutes}:{pad_num(seconds)}"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool) or is_missing(value):
        return None
    if isinstance(value, (int, float)):
        if math.isnan(value) or math.isinf(value):
            return None
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None
    return None


def format_date(value: Any, fmt: Optional[str] = None) -> str:
    """
    Format an ISO-8601 string or epoch milliseconds as a date.

    Without ``fmt`` the short ``M/D/YYYY`` form of the date in the host
    timezone is used; otherwise ``fmt`` is an ``strftime`` pattern applied
    to the value as given. Unparseable input renders as
    ``"Invalid Date"``.
    """
    moment = _parse_datetime(value)
    if moment is None:
        return "Invalid Date"
    if fmt is None:
        moment = moment.astimezone()
        return f"{moment.month}/{moment.day}/{moment.year}"
    return moment.strftime(str(fmt))


def format_duration(seconds: Any, with_seconds: Any = False) -> Any:
    """Format a duration as ``HH:MM`` or ``HH:MM:SS``, wrapping at 24 hours."""
    number = to_number(seconds)
    if is_missing(seconds) or math.isnan(number) or math.isinf(number):
        return UNDEFINED

    total = math.floor(number) % SECONDS_PER_DAY
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if truthy(with_seconds):
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{hours:02d}:{minutes:02d}"


def pace(speed_mps: Any, unit: str = "km") -> Any:
    """
    Convert a speed in metres per second to decimal minutes per unit.

    ``unit`` is ``"km"`` or ``"mile"``. Zero or missing speed has no pace.
    """
    speed = to_number(speed_mps)
    if math.isnan(speed) or speed <= 0:
        return UNDEFINED
    distance = METERS_PER_MILE if str(unit).lower().startswith("mi") else 1000.0
    return distance / speed / 60.0


FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "round": round_half_up,
    "floor": _floor,
    "ceil": _ceil,
    "abs": _abs,
    "min": _min,
    "max": _max,
    "int": _int,
    "float": _float,
    "str": to_text,
    "len": _len,
    "format_date": format_date,
    "format_duration": format_duration,
    "decimal_to_time_string": decimal_to_time_string,
    "pad_num": pad_num,
    "pace": pace,
}

CONSTANTS: Dict[str, Any] = {
    "METERS_PER_MILE": METERS_PER_MILE,
    "METERS_PER_FOOT": METERS_PER_FOOT,
    "MPS_TO_MPH": MPS_TO_MPH,
    "MPS_TO_KPH": MPS_TO_KPH,
    "undefined": UNDEFINED,
}
