from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from xtzdelegations.errors import is_external_api_error
from xtzdelegations.model import Delegation
from xtzdelegations.poller import (
    PAGE_SIZE,
    PollerCancelled,
    PollerService,
    parse_retry_after,
)

ONE_DELEGATION = (
    '[{"id":1,"timestamp":"2022-05-05T06:29:14Z","amount":100,'
    '"sender":{"address":"tz1"},"level":1}]'
)


class FakeRepo:
    def __init__(self, latest=0, latest_error=None, insert_error=None):
        self.latest = latest
        self.latest_error = latest_error
        self.insert_error = insert_error
        self.inserted = []
        self.latest_calls = 0

    def get_latest_tzkt_id(self):
        self.latest_calls += 1
        if self.latest_error is not None:
            raise self.latest_error
        return self.latest

    def insert_delegations(self, delegations):
        if self.insert_error is not None:
            raise self.insert_error
        self.inserted.append(list(delegations))

    def list_delegations(self, limit, offset, year):
        return []


class Recorder:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def make_poller(repo, responses):
    recorder = Recorder(responses)
    client = httpx.Client(transport=httpx.MockTransport(recorder))
    poller = PollerService(repo, client)
    poller.initial_backoff = 0.0
    poller.error_delay = 0.0
    return poller, recorder


def test_sync_batch_success():
    repo = FakeRepo()
    poller, recorder = make_poller(repo, [httpx.Response(200, text=ONE_DELEGATION)])
    assert poller.sync_batch() is True
    assert repo.inserted == [[
        Delegation(
            tzkt_id=1,
            timestamp=datetime(2022, 5, 5, 6, 29, 14, tzinfo=timezone.utc),
            amount=100,
            delegator="tz1",
            level=1,
        )
    ]]
    params = recorder.requests[0].url.params
    assert params["limit"] == "1000"
    assert params["id.gt"] == "0"


def test_sync_batch_uses_latest_id():
    repo = FakeRepo(latest=42)
    poller, recorder = make_poller(repo, [httpx.Response(200, text="[]")])
    poller.sync_batch()
    assert recorder.requests[0].url.params["id.gt"] == "42"


def test_sync_batch_no_new_data():
    repo = FakeRepo()
    poller, _ = make_poller(repo, [httpx.Response(200, text="[]")])
    assert poller.sync_batch() is True
    assert repo.inserted == []


def test_sync_batch_full_page_not_caught_up():
    items = [
        {"id": i, "timestamp": "2022-05-05T06:29:14Z", "amount": i,
         "sender": {"address": "tz1"}, "level": i}
        for i in range(1, PAGE_SIZE + 1)
    ]
    repo = FakeRepo()
    poller, _ = make_poller(repo, [httpx.Response(200, text=json.dumps(items))])
    assert poller.sync_batch() is False
    assert len(repo.inserted[0]) == PAGE_SIZE


def test_sync_batch_repo_error():
    repo = FakeRepo(latest_error=RuntimeError("db error"))
    poller, recorder = make_poller(repo, [httpx.Response(200, text="[]")])
    with pytest.raises(Exception) as info:
        poller.sync_batch()
    assert "failed to get latest TzktID" in str(info.value)
    assert recorder.requests == []


def test_sync_batch_api_error():
    repo = FakeRepo()
    poller, recorder = make_poller(repo, [httpx.Response(500, text="error")])
    with pytest.raises(Exception) as info:
        poller.sync_batch()
    assert "failed to fetch delegations from Tzkt API" in str(info.value)
    assert is_external_api_error(info.value)
    assert len(recorder.requests) == 5


def test_sync_batch_insert_error():
    repo = FakeRepo(insert_error=RuntimeError("boom"))
    poller, recorder = make_poller(repo, [httpx.Response(200, text=ONE_DELEGATION)])
    with pytest.raises(Exception) as info:
        poller.sync_batch()
    assert "failed to store delegations to database" in str(info.value)
    assert repo.latest_calls == 1
    assert len(recorder.requests) == 1
    assert repo.inserted == []


def test_fetch_batch_retries_after_rate_limit():
    poller, recorder = make_poller(
        FakeRepo(),
        [httpx.Response(429, headers={"Retry-After": "0"}),
         httpx.Response(200, text=ONE_DELEGATION)],
    )
    result = poller.fetch_batch(0)
    assert [d.tzkt_id for d in result] == [1]
    assert len(recorder.requests) == 2


def test_fetch_batch_retries_after_server_error():
    poller, recorder = make_poller(
        FakeRepo(),
        [httpx.Response(502), httpx.Response(200, text=ONE_DELEGATION)],
    )
    result = poller.fetch_batch(7)
    assert [d.delegator for d in result] == ["tz1"]
    assert len(recorder.requests) == 2


def test_fetch_batch_unexpected_status_not_retried():
    poller, recorder = make_poller(FakeRepo(), [httpx.Response(404, text="missing")])
    with pytest.raises(Exception) as info:
        poller.fetch_batch(0)
    assert "unexpected status code: 404, body: missing" in str(info.value)
    assert len(recorder.requests) == 1


def test_fetch_batch_invalid_json():
    poller, recorder = make_poller(FakeRepo(), [httpx.Response(200, text="not json")])
    with pytest.raises(Exception) as info:
        poller.fetch_batch(0)
    assert "error decoding response body" in str(info.value)
    assert len(recorder.requests) == 1


def test_fetch_batch_null_body_is_empty():
    poller, _ = make_poller(FakeRepo(), [httpx.Response(200, text="null")])
    assert poller.fetch_batch(0) == []


def test_fetch_batch_cancelled_during_backoff():
    poller, _ = make_poller(FakeRepo(), [httpx.Response(503)])
    poller.stop()
    with pytest.raises(PollerCancelled):
        poller.fetch_batch(0)


@pytest.mark.parametrize("header, expected", [("5", 5.0), ("0", 0.0), ("-3", -3.0)])
def test_parse_retry_after_seconds(header, expected):
    assert parse_retry_after(header) == expected


@pytest.mark.parametrize("header", ["", "abc", "5s", "1.5"])
def test_parse_retry_after_invalid(header):
    with pytest.raises(ValueError):
        parse_retry_after(header)


def test_parse_retry_after_http_date():
    moment = datetime.now(timezone.utc) + timedelta(seconds=120)
    header = format_datetime(moment, usegmt=True)
    assert 100 < parse_retry_after(header) <= 120


def test_start_stop_and_wait():
    repo = FakeRepo()
    poller, _ = make_poller(repo, [httpx.Response(200, text="[]")])
    poller.start()
    poller.stop()
    assert poller.wait(5) is True
    assert poller.stopped is True


def test_start_twice_rejected():
    repo = FakeRepo()
    poller, _ = make_poller(repo, [httpx.Response(200, text="[]")])
    poller.start()
    try:
        with pytest.raises(RuntimeError):
            poller.start()
    finally:
        poller.stop()
        assert poller.wait(5) is True