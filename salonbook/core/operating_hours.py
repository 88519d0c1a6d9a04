"""
Operating hours resolution.

Salons store their hours in one of several shapes, depending on which client
wrote them:

* ``settings["operatingHours"]`` as a per-day mapping
  ``{"monday": {"isOpen": true, "startTime": "09:00", "endTime": "18:00"}, ...}``,
  either already decoded or as a JSON string. Real data is sometimes encoded
  twice, either with backslash-escaped quotes or as a JSON string literal
  that itself contains JSON.
* ``settings["openingHours"]`` as one ``HH:MM-HH:MM`` range for every day.

Each shape has a named strategy returning canonical hours or ``None``. The
strategies are composed by ``first_success``; the first strategy to produce a
validated result wins in full and nothing is merged across shapes.
"""

import json
import re
from typing import Any, Callable, Iterable, Mapping

import structlog

from ..config import settings
from .clock import WEEKDAYS, parse_hhmm
from .errors import ConfigurationError
from .types import DayWindow, OperatingHours, uniform_hours

logger = structlog.get_logger("salonbook.operating_hours")

REQUIRED_DAY_FIELDS = ("isOpen", "startTime", "endTime")
SIMPLE_RANGE_RE = re.compile(r"(\d{2}):(\d{2})-(\d{2}):(\d{2})")
MAX_DECODE_PASSES = 2


class _NotConfigured:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_CONFIGURED"


NOT_CONFIGURED = _NotConfigured()

Strategy = Callable[[Mapping[str, Any]], "dict[str, DayWindow] | None"]


def _decode_candidates(raw: Any) -> Iterable[Any]:
    """
    Yield successive decodings of ``raw``.

    A mapping is yielded as-is. A string is decoded up to two levels deep,
    trying plain JSON first and then the variant with ``\\"`` unescaped.
    """
    if isinstance(raw, Mapping):
        yield raw
        return
    if not isinstance(raw, str):
        return

    pending = [raw]
    for _ in range(MAX_DECODE_PASSES):
        next_round: list[str] = []
        for text in pending:
            for variant in dict.fromkeys((text, text.replace('\\"', '"'))):
                try:
                    decoded = json.loads(variant)
                except (TypeError, ValueError):
                    continue
                if isinstance(decoded, str):
                    next_round.append(decoded)
                else:
                    yield decoded
        if not next_round:
            return
        pending = next_round


def _looks_canonical(candidate: Any) -> bool:
    if not isinstance(candidate, Mapping) or not candidate:
        return False
    first_day = next(iter(candidate))
    entry = candidate.get(first_day)
    return isinstance(entry, Mapping) and all(f in entry for f in REQUIRED_DAY_FIELDS)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _to_windows(candidate: Mapping[str, Any]) -> dict[str, DayWindow] | None:
    by_day = {str(k).strip().lower(): v for k, v in candidate.items()}
    hours: dict[str, DayWindow] = {}
    for day in WEEKDAYS:
        entry = by_day.get(day)
        if not isinstance(entry, Mapping):
            hours[day] = DayWindow.closed()
            continue
        is_open = _coerce_bool(entry.get("isOpen"))
        start = str(entry.get("startTime") or "").strip()
        end = str(entry.get("endTime") or "").strip()
        if not is_open:
            hours[day] = DayWindow(is_open=False, start_time=start or "09:00", end_time=end or "18:00")
            continue
        try:
            if parse_hhmm(start) >= parse_hhmm(end):
                hours[day] = DayWindow(is_open=False, start_time=start, end_time=end)
                continue
        except ValueError:
            return None
        hours[day] = DayWindow(is_open=True, start_time=start, end_time=end)
    return hours


def structured_hours(raw_settings: Mapping[str, Any]) -> dict[str, DayWindow] | None:
    """Per-day object, possibly JSON encoded once or twice."""
    raw = raw_settings.get("operatingHours")
    if raw is None:
        return None
    for candidate in _decode_candidates(raw):
        if _looks_canonical(candidate):
            hours = _to_windows(candidate)
            if hours is not None:
                return hours
    return None


def simple_range_hours(raw_settings: Mapping[str, Any]) -> dict[str, DayWindow] | None:
    """``HH:MM-HH:MM`` applied to all seven days."""
    raw = raw_settings.get("openingHours")
    if not isinstance(raw, str):
        return None
    match = SIMPLE_RANGE_RE.search(raw)
    if not match:
        return None
    start = f"{match.group(1)}:{match.group(2)}"
    end = f"{match.group(3)}:{match.group(4)}"
    try:
        if parse_hhmm(start) >= parse_hhmm(end):
            return None
    except ValueError:
        return None
    return uniform_hours(start, end)


STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("structured", structured_hours),
    ("simple_range", simple_range_hours),
)


def first_success(
    strategies: Iterable[tuple[str, Strategy]], raw_settings: Mapping[str, Any]
) -> tuple[str, dict[str, DayWindow]] | None:
    for name, strategy in strategies:
        result = strategy(raw_settings)
        if result is not None:
            return name, result
    return None


def _as_mapping(raw_settings: Any) -> Mapping[str, Any]:
    if isinstance(raw_settings, Mapping):
        return raw_settings
    for candidate in _decode_candidates(raw_settings):
        if isinstance(candidate, Mapping):
            return candidate
    return {}


class OperatingHoursResolver:
    def __init__(self, strategies: Iterable[tuple[str, Strategy]] = STRATEGIES):
        self.strategies = tuple(strategies)

    def resolve(self, raw_settings: Any) -> "dict[str, DayWindow] | _NotConfigured":
        found = first_success(self.strategies, _as_mapping(raw_settings))
        if found is None:
            return NOT_CONFIGURED
        _, hours = found
        return hours

    def resolve_or_default(self, raw_settings: Any) -> dict[str, DayWindow]:
        hours = self.resolve(raw_settings)
        if hours is NOT_CONFIGURED:
            logger.warning(
                "operating_hours_fallback",
                code=ConfigurationError.code,
                default_start=settings.DEFAULT_OPEN_TIME,
                default_end=settings.DEFAULT_CLOSE_TIME,
            )
            return default_hours()
        return hours


def default_hours() -> dict[str, DayWindow]:
    return uniform_hours(settings.DEFAULT_OPEN_TIME, settings.DEFAULT_CLOSE_TIME)


def window_for(hours: "OperatingHours | _NotConfigured", day_name: str) -> DayWindow:
    if hours is NOT_CONFIGURED:
        return default_hours()[day_name]
    return hours.get(day_name) or DayWindow.closed()


resolver = OperatingHoursResolver()
