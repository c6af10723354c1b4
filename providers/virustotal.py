import logging
from typing import Optional

import requests

from schemas import DomainReputation, Lookup
from utils.http import Http
from . import provider_name

log = logging.getLogger(__name__)

VT_BASE = "https://www.virustotal.com/api/v3"

CHECK_FAILED = "Failed to check VirusTotal reputation"


@provider_name("virustotal")
async def enrich(indicator: str, api_key: Optional[str], http: Http) -> Lookup[DomainReputation]:
    if not api_key:
        log.warning("VirusTotal API key not configured, skipping %s", indicator)
        return Lookup[DomainReputation].failure(indicator, CHECK_FAILED)
    headers = {"x-apikey": api_key}
    url = f"{VT_BASE}/domains/{indicator}"
    log.info("Checking VirusTotal for domain: %s", indicator)
    try:
        payload = await http.aget(url, headers=headers)
    except (requests.RequestException, ValueError) as e:
        log.warning("VirusTotal API error for domain %s: %s", indicator, e)
        return Lookup[DomainReputation].failure(indicator, CHECK_FAILED)

    d = payload.get("data") if isinstance(payload, dict) else None
    attrs = d.get("attributes") if isinstance(d, dict) else None
    if not isinstance(attrs, dict):
        log.warning("VirusTotal returned no attributes for domain %s", indicator)
        return Lookup[DomainReputation].failure(indicator, CHECK_FAILED)
    stats = attrs.get("last_analysis_stats") or {}
    malicious = stats.get("malicious") if isinstance(stats, dict) else None
    score = attrs.get("reputation")
    rep = DomainReputation(
        domain=indicator,
        # a zero reputation is reported the same as a missing one
        reputation=score if isinstance(score, int) and score else "N/A",
        malicious_votes=malicious if isinstance(malicious, int) else 0,
    )
    return Lookup[DomainReputation].success(indicator, rep)
