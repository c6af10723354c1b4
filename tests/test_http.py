import pytest
import requests
from concurrent.futures import ThreadPoolExecutor

from conftest import FakeResponse
from utils.http import Http


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr("utils.http.time.sleep", recorded.append)
    return recorded


def _serve(monkeypatch, responses):
    calls = []

    def fake_request(method, url, **kwargs):
        calls.append((method, url, kwargs))
        resp = responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp

    monkeypatch.setattr("utils.http.requests.request", fake_request)
    return calls


def test_get_passes_timeout_and_params(monkeypatch, sleeps):
    calls = _serve(monkeypatch, [FakeResponse(payload={"ok": 1})])
    assert Http(timeout=7).get("https://x.test/a", headers={"k": "v"}, params={"q": 1}) == {"ok": 1}
    method, url, kwargs = calls[0]
    assert (method, url) == ("GET", "https://x.test/a")
    assert kwargs["timeout"] == 7
    assert kwargs["params"] == {"q": 1}
    assert sleeps == []


def test_single_attempt_raises_without_sleeping(monkeypatch, sleeps):
    calls = _serve(monkeypatch, [requests.ConnectionError("refused")])
    with pytest.raises(requests.ConnectionError):
        Http(retries=1).get("https://x.test")
    assert len(calls) == 1
    assert sleeps == []


def test_rate_limit_backs_off_then_succeeds(monkeypatch, sleeps):
    calls = _serve(monkeypatch, [FakeResponse(429), FakeResponse(payload={"done": True})])
    assert Http(retries=3, backoff=2).get("https://x.test") == {"done": True}
    assert len(calls) == 2
    assert sleeps == [2]


def test_rate_limit_exhausted_raises(monkeypatch, sleeps):
    calls = _serve(monkeypatch, [FakeResponse(429), FakeResponse(429)])
    with pytest.raises(requests.HTTPError, match="429"):
        Http(retries=2, backoff=1).get("https://x.test")
    assert len(calls) == 2
    assert sleeps == [1]


def test_errors_other_than_rate_limit_are_not_retried(monkeypatch, sleeps):
    calls = _serve(monkeypatch, [FakeResponse(502), FakeResponse(payload={"late": True})])
    with pytest.raises(requests.HTTPError, match="502"):
        Http(retries=3).get("https://x.test")
    assert len(calls) == 1
    assert sleeps == []

    _serve(monkeypatch, [requests.ConnectionError("refused"), FakeResponse()])
    with pytest.raises(requests.ConnectionError):
        Http(retries=3).get("https://x.test")


def test_using_keeps_settings_and_swaps_executor():
    base = Http(timeout=4, retries=3, backoff=0.5)
    with ThreadPoolExecutor(max_workers=2) as pool:
        pooled = base.using(pool)
        single = base.using(pool, retries=1)
    assert (pooled.timeout, pooled.retries, pooled.backoff, pooled.executor) == (4, 3, 0.5, pool)
    assert single.retries == 1
    assert base.executor is None


def test_awaitable_post(monkeypatch, sleeps, run):
    calls = _serve(monkeypatch, [FakeResponse(payload={"id": 1})])
    assert run(Http().apost("https://x.test/p", json={"a": 1}, headers={"h": "1"})) == {"id": 1}
    method, _, kwargs = calls[0]
    assert method == "POST"
    assert kwargs["json"] == {"a": 1}
