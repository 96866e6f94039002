from __future__ import annotations

import calendar
import json
import re
from datetime import datetime, timezone
from pathlib import Path

import feedparser

from .records import extract_records, to_str

FEED_SUFFIXES = {".xml", ".rss", ".atom"}


def load_batch(path: Path, source_type: str = "grant") -> list[dict]:
    suffix = path.suffix.lower()
    content = path.read_text(encoding="utf-8")
    if suffix in FEED_SUFFIXES:
        return parse_feed(content, source_type=source_type)
    if suffix == ".jsonl":
        return [json.loads(line) for line in content.splitlines() if line.strip()]
    return extract_records(json.loads(content))


def parse_feed(content: str, source_type: str = "grant") -> list[dict]:
    feed = feedparser.parse(content)
    if feed.bozo and not feed.entries:
        feed = feedparser.parse(_sanitize_xml(content))
        if feed.bozo and not feed.entries:
            raise ValueError(f"Feed parse error: {feed.bozo_exception}")

    records: list[dict] = []
    for entry in feed.entries:
        record = _to_record(entry, source_type)
        if record:
            records.append(record)
    return records


def _to_record(entry: feedparser.FeedParserDict, source_type: str) -> dict | None:
    title = to_str(entry.get("title"))
    if not title:
        return None

    link = to_str(entry.get("link"))
    pub_date = _entry_datetime(entry)
    guid = to_str(entry.get("id") or entry.get("guid"))
    identifier = guid or link or f"{title}:{pub_date or ''}"

    return {
        "id": f"feed::{identifier}",
        "source_type": source_type,
        "title": title,
        "description": _clean_html(to_str(entry.get("description") or entry.get("summary"))),
        "agency": to_str(_extract_category(entry)),
        "published_at": pub_date,
        "url": link,
    }


def _entry_datetime(entry: feedparser.FeedParserDict) -> str | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc).isoformat()
    return None


def _clean_html(value: str | None) -> str | None:
    if not value:
        return None
    return re.sub(r"\s+", " ", re.sub(r"<[^>]+>", " ", value)).strip() or None


def _extract_category(entry: feedparser.FeedParserDict) -> str | None:
    tags = entry.get("tags") or []
    if isinstance(tags, list) and tags:
        tag = tags[0]
        if isinstance(tag, dict):
            return to_str(tag.get("term"))
        return to_str(tag)
    return None


def _sanitize_xml(content: str) -> str:
    cleaned = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", content)
    return re.sub(
        r"&(?![a-zA-Z]{2,6};|#\d{2,5};|#x[0-9a-fA-F]{2,5};)",
        "&amp;",
        cleaned,
    )
