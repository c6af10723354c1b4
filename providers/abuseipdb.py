import logging
from typing import Optional

import requests

from schemas import AbuseScore, Lookup
from utils.http import Http
from . import provider_name

log = logging.getLogger(__name__)

ABUSE_BASE = "https://api.abuseipdb.com/api/v2/check"
MAX_AGE_DAYS = 90

NO_DATA = "No abuse data available"
CHECK_FAILED = "Failed to check AbuseIPDB"


@provider_name("abuseipdb")
async def enrich(indicator: str, api_key: Optional[str], http: Http) -> Lookup[AbuseScore]:
    if not api_key:
        log.warning("AbuseIPDB API key not configured, skipping %s", indicator)
        return Lookup[AbuseScore].failure(indicator, CHECK_FAILED)
    headers = {"Key": api_key, "Accept": "application/json"}
    params = {"ipAddress": indicator, "maxAgeInDays": MAX_AGE_DAYS}
    log.info("Checking AbuseIPDB for IP: %s", indicator)
    try:
        payload = await http.aget(ABUSE_BASE, headers=headers, params=params)
    except (requests.RequestException, ValueError) as e:
        log.warning("AbuseIPDB API error for IP %s: %s", indicator, e)
        return Lookup[AbuseScore].failure(indicator, CHECK_FAILED)

    d = payload.get("data") if isinstance(payload, dict) else None
    score = d.get("abuseConfidenceScore") if isinstance(d, dict) else None
    if not isinstance(score, (int, float)) or isinstance(score, bool):
        return Lookup[AbuseScore].failure(indicator, NO_DATA)
    return Lookup[AbuseScore].success(indicator, AbuseScore(abuse_confidence_score=int(score)))
