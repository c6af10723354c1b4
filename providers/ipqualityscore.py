import logging
from typing import Optional
from urllib.parse import quote

import requests

from schemas import EmailQuality, Lookup
from utils.http import Http
from . import provider_name

log = logging.getLogger(__name__)

IPQS_BASE = "https://www.ipqualityscore.com/api/json/email"

FETCH_FAILED = "Failed to fetch email quality data."


def _as_int(value, fallback: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


@provider_name("ipqualityscore")
async def enrich(indicator: str, api_key: Optional[str], http: Http) -> Lookup[EmailQuality]:
    if not api_key:
        log.warning("IPQualityScore API key not configured, skipping %s", indicator)
        return Lookup[EmailQuality].failure(indicator, FETCH_FAILED)
    url = f"{IPQS_BASE}/{quote(api_key, safe='')}/{quote(indicator, safe='@')}"
    log.info("Checking email quality for: %s", indicator)
    try:
        payload = await http.aget(url)
    except (requests.RequestException, ValueError) as e:
        log.warning("IPQualityScore API error for email %s: %s", indicator, e)
        return Lookup[EmailQuality].failure(indicator, FETCH_FAILED)

    if not isinstance(payload, dict) or not payload.get("success"):
        log.warning("IPQualityScore reported failure for %s: %s", indicator,
                    payload.get("message") if isinstance(payload, dict) else payload)
        return Lookup[EmailQuality].failure(indicator, FETCH_FAILED)
    age = payload.get("domain_age")
    quality = EmailQuality(
        valid=bool(payload.get("valid", False)),
        disposable=bool(payload.get("disposable", False)),
        deliverability=str(payload.get("deliverability") or "N/A"),
        fraud_score=_as_int(payload.get("fraud_score")),
        domain_age=str((age.get("human") if isinstance(age, dict) else None) or "N/A"),
    )
    return Lookup[EmailQuality].success(indicator, quality)
