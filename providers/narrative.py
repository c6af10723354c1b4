import logging
from typing import Optional

import requests

from utils.http import Http

log = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_MAX_TOKENS = 300
DEFAULT_ATTEMPTS = 3

SYSTEM_PROMPT = (
    "You are a cybersecurity analyst who summarizes key information and based on it "
    "gives verdict whether the email is valid or spam."
)
FALLBACK_VERDICT = "AI analysis unavailable due to a technical issue."


class NarrativeAnalyzer:
    """Free-text validity/spam verdict for a whole header from a chat-completions endpoint.

    Every failure (transport, non-2xx status, or a response without a message)
    is retried immediately, up to ``attempts`` calls in total. When all of them
    fail the fixed ``fallback`` verdict is returned instead of raising.
    """

    def __init__(self, api_key: Optional[str], http: Http, model: str = DEFAULT_MODEL,
                 max_tokens: int = DEFAULT_MAX_TOKENS, attempts: int = DEFAULT_ATTEMPTS,
                 url: str = OPENAI_CHAT_URL, fallback: str = FALLBACK_VERDICT):
        self.api_key = api_key
        self.http = http
        self.model = model
        self.max_tokens = max_tokens
        self.attempts = max(1, attempts)
        self.url = url
        self.fallback = fallback

    def _body(self, header_text: str) -> dict:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Analyze this email header:\n\n{header_text}"},
            ],
            "max_tokens": self.max_tokens,
        }

    @staticmethod
    def _content(payload) -> str:
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"unexpected completion payload: {e!r}") from e
        if not isinstance(content, str):
            raise ValueError("completion content is not text")
        return content

    async def analyze(self, header_text: str) -> str:
        headers = {"Authorization": f"Bearer {self.api_key or ''}", "Content-Type": "application/json"}
        body = self._body(header_text)
        last_err = None
        for attempt in range(1, self.attempts + 1):
            if attempt == 1:
                log.info("Sending header to %s for analysis", self.model)
            else:
                log.info("Retrying narrative analysis (attempt %d of %d)", attempt, self.attempts)
            try:
                payload = await self.http.apost(self.url, json=body, headers=headers)
                return self._content(payload)
            except (requests.RequestException, ValueError) as e:
                last_err = e
        log.error("Narrative analysis failed after %d attempts: %s", self.attempts, last_err)
        return self.fallback
