from datetime import datetime, timezone

import pytest

from xtzdelegations.model import Delegation

FIXED_TIME = datetime(2022, 5, 5, 6, 29, 14, tzinfo=timezone.utc)


def payload(**overrides):
    data = {
        "id": 1,
        "timestamp": "2022-05-05T06:29:14Z",
        "amount": 100,
        "sender": {"address": "tz1"},
        "level": 1,
    }
    data.update(overrides)
    return data


def test_from_tzkt_maps_fields():
    d = Delegation.from_tzkt(payload())
    assert d.tzkt_id == 1
    assert d.timestamp == FIXED_TIME
    assert d.amount == 100
    assert d.delegator == "tz1"
    assert d.level == 1
    assert d.id == 0


def test_from_tzkt_normalises_offset_to_utc():
    d = Delegation.from_tzkt(payload(timestamp="2022-05-05T08:29:14+02:00"))
    assert d.timestamp == FIXED_TIME
    assert d.timestamp.utcoffset() == FIXED_TIME.utcoffset()


def test_from_tzkt_keeps_fractional_seconds():
    d = Delegation.from_tzkt(payload(timestamp="2022-05-05T06:29:14.5Z"))
    assert d.timestamp > FIXED_TIME
    assert d.timestamp.replace(microsecond=0) == FIXED_TIME


def test_from_tzkt_missing_sender_gives_empty_delegator():
    d = Delegation.from_tzkt(payload(sender=None))
    assert d.delegator == ""
    assert d.tzkt_id == 1


def test_from_tzkt_preserves_large_values():
    big = 2**62
    d = Delegation.from_tzkt(payload(id=big, amount=big, level=big))
    assert (d.tzkt_id, d.amount, d.level) == (big, big, big)


@pytest.mark.parametrize(
    "overrides",
    [
        {"amount": "abc"},
        {"amount": 1.5},
        {"level": True},
        {"timestamp": "bad"},
        {"timestamp": 12345},
        {"sender": "tz1"},
    ],
)
def test_from_tzkt_rejects_malformed(overrides):
    with pytest.raises(ValueError):
        Delegation.from_tzkt(payload(**overrides))


def test_from_tzkt_rejects_non_object():
    with pytest.raises(ValueError):
        Delegation.from_tzkt(["not", "an", "object"])


def test_delegations_compare_by_value():
    a = Delegation(tzkt_id=1, delegator="tz1", amount=100, level=1, timestamp=FIXED_TIME)
    b = Delegation.from_tzkt(payload())
    assert a == b
    assert hash(a) == hash(b)


def test_delegation_is_immutable():
    d = Delegation(tzkt_id=1, amount=3)
    with pytest.raises(AttributeError):
        d.amount = 5
    assert d.amount == 3
    assert d.tzkt_id == 1