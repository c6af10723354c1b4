import logging
from typing import Optional

import requests

from schemas import GeoLocation, Lookup
from utils.extract import is_private_ip
from utils.http import Http
from . import provider_name

log = logging.getLogger(__name__)

GEO_BASE = "http://ip-api.com/json"

NOT_APPLICABLE = "Private or Loopback IP - Geolocation Not Applicable"
FETCH_FAILED = "Failed to fetch geolocation data"


@provider_name("geolocation")
async def enrich(indicator: str, api_key: Optional[str], http: Http) -> Lookup[GeoLocation]:
    # ip-api is keyless
    if is_private_ip(indicator):
        log.info("Private or loopback IP detected: %s", indicator)
        return Lookup[GeoLocation].failure(indicator, NOT_APPLICABLE)
    log.info("Fetching geolocation for IP: %s", indicator)
    try:
        payload = await http.aget(f"{GEO_BASE}/{indicator}")
    except (requests.RequestException, ValueError) as e:
        log.warning("Geolocation API error for IP %s: %s", indicator, e)
        return Lookup[GeoLocation].failure(indicator, FETCH_FAILED)

    if not isinstance(payload, dict) or payload.get("status") == "fail":
        log.warning("Geolocation lookup refused for IP %s: %s", indicator,
                    payload.get("message") if isinstance(payload, dict) else payload)
        return Lookup[GeoLocation].failure(indicator, FETCH_FAILED)
    geo = GeoLocation(
        city=str(payload.get("city") or "N/A"),
        region=str(payload.get("regionName") or "N/A"),
        country=str(payload.get("country") or "N/A"),
    )
    return Lookup[GeoLocation].success(indicator, geo)
