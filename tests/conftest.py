import asyncio
from typing import Any, Dict, List, Optional

import pytest
import requests

from schemas import ApiKeys, Config

GEO_URL = "http://ip-api.com/json/"
ABUSE_URL = "https://api.abuseipdb.com/api/v2/check"
IPQS_URL = "https://www.ipqualityscore.com/api/json/email/"
VT_URL = "https://www.virustotal.com/api/v3/domains/"
CHAT_URL = "https://api.openai.com/v1/chat/completions"

GEO_OK = {"status": "success", "city": "Mountain View", "regionName": "California", "country": "United States"}
ABUSE_OK = {"data": {"ipAddress": "8.8.8.8", "abuseConfidenceScore": 0}}
IPQS_OK = {
    "success": True,
    "valid": True,
    "disposable": False,
    "deliverability": "high",
    "fraud_score": 12,
    "domain_age": {"human": "20 years ago"},
}
VT_OK = {"data": {"attributes": {"reputation": 0, "last_analysis_stats": {"malicious": 0}}}}
CHAT_OK = {"choices": [{"message": {"content": "The email looks legitimate."}}]}


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._payload


class FakeHttp:
    """Stands in for utils.http.Http; answers by URL prefix and records every call.

    A route value may be a payload, an exception instance (raised), or a list
    of those consumed one per call.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None, delays: Optional[Dict[str, float]] = None):
        self.routes = dict(routes or {})
        self.delays = dict(delays or {})
        self.calls: List[Dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.executor = None

    async def _answer(self, method, url, headers=None, params=None, json=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "params": params, "json": json})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = next((d for key, d in self.delays.items() if key in url), 0.001)
            await asyncio.sleep(delay)
            for prefix, resp in self.routes.items():
                if url.startswith(prefix):
                    if isinstance(resp, list):
                        resp = resp.pop(0)
                    if isinstance(resp, Exception):
                        raise resp
                    return resp
            raise requests.ConnectionError(f"no route for {url}")
        finally:
            self.in_flight -= 1

    def using(self, executor=None, retries=None):
        return self

    async def aget(self, url, headers=None, params=None):
        return await self._answer("GET", url, headers=headers, params=params)

    async def apost(self, url, json, headers=None):
        return await self._answer("POST", url, headers=headers, json=json)

    def urls(self, prefix: str = "") -> List[str]:
        return [c["url"] for c in self.calls if c["url"].startswith(prefix)]


@pytest.fixture
def cfg() -> Config:
    return Config(api_keys=ApiKeys(abuseipdb="abuse-key", ipqualityscore="ipqs-key",
                                   virustotal="vt-key", openai="openai-key"))


@pytest.fixture
def happy_routes() -> Dict[str, Any]:
    return {GEO_URL: GEO_OK, ABUSE_URL: ABUSE_OK, IPQS_URL: IPQS_OK, VT_URL: VT_OK, CHAT_URL: CHAT_OK}


@pytest.fixture
def run():
    return asyncio.run
