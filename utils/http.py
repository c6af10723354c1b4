import asyncio
import time
import requests
from concurrent.futures import Executor
from functools import partial
from typing import Dict, Optional


class Http:
    """Blocking JSON transport over ``requests``.

    ``retries`` only covers HTTP 429 answers, waiting ``backoff`` seconds times
    the attempt number in between; any other error is raised on the first try.
    The awaitable variants run in ``executor`` (the loop's default pool when
    ``None``).
    """

    def __init__(self, timeout: float = 15, retries: int = 1, backoff: float = 1.5,
                 executor: Optional[Executor] = None):
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff = backoff
        self.executor = executor

    def using(self, executor: Optional[Executor] = None, retries: Optional[int] = None) -> "Http":
        return Http(timeout=self.timeout, retries=self.retries if retries is None else retries,
                    backoff=self.backoff, executor=executor)

    def _request(self, method: str, url: str, headers: Optional[Dict] = None,
                 params: Optional[Dict] = None, json: Optional[Dict] = None):
        for attempt in range(self.retries):
            r = requests.request(method, url, headers=headers, params=params, json=json, timeout=self.timeout)
            if r.status_code == 429 and attempt < self.retries - 1:  # rate limit
                time.sleep(self.backoff * (attempt + 1))
                continue
            r.raise_for_status()
            return r.json()

    def get(self, url: str, headers: Optional[Dict] = None, params: Optional[Dict] = None):
        return self._request("GET", url, headers=headers, params=params)

    def post(self, url: str, json: Dict, headers: Optional[Dict] = None):
        return self._request("POST", url, headers=headers, json=json)

    async def aget(self, url: str, headers: Optional[Dict] = None, params: Optional[Dict] = None):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, partial(self.get, url, headers=headers, params=params))

    async def apost(self, url: str, json: Dict, headers: Optional[Dict] = None):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, partial(self.post, url, json=json, headers=headers))
