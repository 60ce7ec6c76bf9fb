"""Domain model and the interfaces between the service layers."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol, runtime_checkable

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?"
    r"([Zz]|[+-]\d{2}:\d{2})"
)


def _parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"timestamp must be a string, got {value!r}")
    match = _RFC3339.fullmatch(value)
    if match is None:
        raise ValueError(f"invalid RFC 3339 timestamp: {value!r}")
    year, month, day, hour, minute, second, fraction, offset = match.groups()
    micros = int((fraction or "0")[:6].ljust(6, "0"))
    if offset in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = -1 if offset[0] == "-" else 1
        hours, minutes = int(offset[1:3]), int(offset[4:6])
        tz = timezone(sign * timedelta(hours=hours, minutes=minutes))
    parsed = datetime(
        int(year), int(month), int(day),
        int(hour), int(minute), int(second), micros, tzinfo=tz,
    )
    return parsed.astimezone(timezone.utc)


def _int_field(payload: Mapping[str, Any], key: str) -> int:
    value = payload.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    return value


@dataclass(frozen=True, kw_only=True)
class Delegation:
    """A single delegation operation."""

    tzkt_id: int = 0
    timestamp: datetime = ZERO_TIME
    amount: int = 0
    delegator: str = ""
    level: int = 0
    id: int = 0

    @classmethod
    def from_tzkt(cls, payload: Mapping[str, Any]) -> Delegation:
        """Build a delegation from one operation object of the TzKT API.

        Raises ValueError when a field has the wrong type or format.
        """
        if not isinstance(payload, Mapping):
            raise ValueError(f"delegation must be an object, got {payload!r}")
        raw_timestamp = payload.get("timestamp")
        timestamp = ZERO_TIME if raw_timestamp is None else _parse_timestamp(raw_timestamp)

        sender = payload.get("sender")
        if sender is None:
            delegator = ""
        elif isinstance(sender, Mapping):
            delegator = sender.get("address") or ""
            if not isinstance(delegator, str):
                raise ValueError(f"sender address must be a string, got {delegator!r}")
        else:
            raise ValueError(f"sender must be an object, got {sender!r}")

        return cls(
            tzkt_id=_int_field(payload, "id"),
            timestamp=timestamp,
            amount=_int_field(payload, "amount"),
            delegator=delegator,
            level=_int_field(payload, "level"),
        )


@runtime_checkable
class DelegationRepositoryPort(Protocol):
    """Persistence of delegations."""

    def insert_delegations(self, delegations: Sequence[Delegation]) -> None:
        """Store delegations, ignoring ones already stored."""
        ...

    def get_latest_tzkt_id(self) -> int:
        """Return the highest stored TzKT id, or 0 when there is none."""
        ...

    def list_delegations(
        self, limit: int, offset: int, year: int | None
    ) -> list[Delegation]:
        """Return one page of delegations, newest first."""
        ...


@runtime_checkable
class DelegationServicePort(Protocol):
    """Business logic for reading delegations."""

    def get_delegations(
        self, page_no: int, page_size: int, year: int | None
    ) -> list[Delegation]:
        """Return one page of delegations, optionally filtered by year."""
        ...