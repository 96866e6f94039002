from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Mapping

from .errors import InvalidInputError, InvalidSignalError
from .models import SOURCE_TYPES, MatchFilters, MatchResult, Signal
from .taxonomy import normalize_code

SOURCE_TYPE_ALIASES = {
    "sources-sought-notice": "sources-sought",
    "rfi": "sources-sought",
    "award": "award-notice",
    "presolicitation": "forecast",
    "pre-solicitation": "forecast",
    "forecast-opportunity": "forecast",
    "rfp": "solicitation",
    "rfq": "solicitation",
    "combined-synopsis-solicitation": "solicitation",
    "grant-notice": "grant",
    "funding-opportunity": "grant",
}

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y-%m-%d %H:%M:%S", "%a, %d %b %Y %H:%M:%S %z")


@dataclass(slots=True)
class MatchRequest:
    description: str
    top_n: int
    filters: MatchFilters


def signal_from_record(record: Mapping[str, Any]) -> Signal:
    if not isinstance(record, Mapping):
        raise InvalidSignalError("Signal record must be an object")

    identifier = to_str(record.get("id") or record.get("signal_id") or record.get("notice_id"))
    if not identifier:
        raise InvalidSignalError("Signal record is missing an id")

    title = to_str(record.get("title"))
    if not title:
        raise InvalidSignalError(f"Signal {identifier} is missing a title")

    try:
        return Signal(
            id=identifier,
            source_type=_source_type(record.get("source_type") or record.get("type")),
            title=title,
            description=to_str(record.get("description") or record.get("summary")) or "",
            agency=to_str(record.get("agency")),
            category_codes=_category_codes(
                record.get("category_codes") or record.get("categories") or record.get("naics")
            ),
            published_at=parse_timestamp(record.get("published_at")),
            response_due_at=parse_timestamp(
                record.get("response_due_at") or record.get("close_date")
            ),
            url=to_str(record.get("url")),
        )
    except InvalidSignalError as exc:
        raise InvalidSignalError(f"Signal {identifier}: {exc}") from exc


def signal_to_record(signal: Signal) -> dict[str, Any]:
    return {
        "id": signal.id,
        "source_type": signal.source_type,
        "agency": signal.agency,
        "category_codes": list(signal.category_codes),
        "title": signal.title,
        "description": signal.description,
        "published_at": _isoformat(signal.published_at),
        "response_due_at": _isoformat(signal.response_due_at),
        "url": signal.url,
    }


def result_to_payload(result: MatchResult) -> dict[str, Any]:
    return {
        "signal": signal_to_record(result.signal),
        "score": round(result.score, 4),
        "reasoning": result.reasoning,
    }


def extract_records(data: Any) -> list[dict]:
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        for key in ("signals", "results", "data", "items"):
            value = data.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
    return []


def match_request_from_payload(payload: Any, default_top_n: int, max_top_n: int) -> MatchRequest:
    if not isinstance(payload, dict):
        raise InvalidInputError("Request body must be a JSON object")

    description = payload.get("startup_description")
    if not isinstance(description, str) or not description.strip():
        raise InvalidInputError("startup_description is required")

    top_n = payload.get("top_n", default_top_n)
    if isinstance(top_n, bool) or not isinstance(top_n, int) or top_n < 0:
        raise InvalidInputError("top_n must be a non-negative integer")
    if top_n > max_top_n:
        raise InvalidInputError(f"top_n must be at most {max_top_n}")

    return MatchRequest(
        description=description,
        top_n=top_n,
        filters=filters_from_payload(payload.get("filters")),
    )


def filters_from_payload(data: Any) -> MatchFilters:
    if data is None:
        return MatchFilters()
    if not isinstance(data, dict):
        raise InvalidInputError("filters must be an object")

    include_expired = data.get("include_expired", False)
    if not isinstance(include_expired, bool):
        raise InvalidInputError("filters.include_expired must be a boolean")

    agencies = _as_list(data.get("agency"), "agency")
    categories = _as_list(data.get("category"), "category")
    source_types = _as_list(data.get("source_type"), "source_type")
    return MatchFilters(
        agencies=tuple(value.upper() for value in agencies),
        categories=tuple(normalize_code(value) for value in categories),
        source_types=tuple(_source_type(value) for value in source_types),
        include_expired=include_expired,
    )


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise InvalidSignalError(f"Timestamp out of range: {value!r}") from exc
    elif isinstance(value, str):
        parsed = _parse_timestamp_str(value.strip())
    else:
        raise InvalidSignalError(f"Unsupported timestamp value: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_timestamp_str(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise InvalidSignalError(f"Unrecognized timestamp: {value!r}")


def _source_type(value: Any) -> str:
    raw = to_str(value)
    if not raw:
        raise InvalidSignalError("source_type is required")
    normalized = normalize_code(raw.replace("_", " ").replace("/", " "))
    normalized = SOURCE_TYPE_ALIASES.get(normalized, normalized)
    if normalized not in SOURCE_TYPES:
        raise InvalidSignalError(
            f"Unknown source_type {raw!r}; expected one of {', '.join(sorted(SOURCE_TYPES))}"
        )
    return normalized


def _category_codes(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = [str(item) for item in value if item is not None]
    elif isinstance(value, int) and not isinstance(value, bool):
        items = [str(value)]
    else:
        raise InvalidSignalError("category_codes must be a list or comma-separated string")
    return tuple(sorted({normalize_code(item) for item in items if item.strip()}))


def _as_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return [item.strip() for item in value if item.strip()]
    raise InvalidInputError(f"filters.{name} must be a string or a list of strings")


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def to_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    return str(value).strip() or None
