"""relay.core.time

Timestamps travel through the relay as ISO-8601 strings (``...Z``, millisecond precision).
These helpers convert at the edges; everything returned here is timezone-aware UTC.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


def _as_utc(dt: datetime) -> datetime:
    # Naive values are treated as UTC.
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def isoformat_z(dt: datetime) -> str:
    """``2025-01-15T12:00:00.000Z`` form used in signal and decision records."""

    return _as_utc(dt).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_dt(value: str) -> datetime:
    """Parse a venue or agent timestamp.

    Both ``Z`` and numeric offsets are accepted. Raises ``ValueError`` on garbage,
    callers decide whether that is fatal.
    """

    text = value.strip()
    if text[-1:] in ("Z", "z"):
        text = f"{text[:-1]}+00:00"
    return _as_utc(datetime.fromisoformat(text))


def epoch_ms(dt: datetime) -> int:
    return int(_as_utc(dt).timestamp() * 1000)


def age(observed_at: datetime, *, now: datetime | None = None) -> timedelta:
    """Time elapsed since ``observed_at`` (wall clock when ``now`` is omitted).

    Negative when the observation lies in the future.
    """

    return _as_utc(now or utc_now()) - _as_utc(observed_at)


def age_ms(observed_at: datetime, *, now: datetime | None = None) -> float:
    return age(observed_at, now=now) / timedelta(milliseconds=1)
