"""Enrichment lookups, registered by name.

Each provider is ``async enrich(indicator, api_key, http) -> Lookup`` and
reports upstream trouble through the returned ``Lookup`` instead of raising.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional

Provider = Callable[[str, Optional[str], Any], Awaitable[Any]]

_REGISTRY: Dict[str, Provider] = {}


def provider_name(name: str) -> Callable[[Provider], Provider]:
    def register(fn: Provider) -> Provider:
        if name in _REGISTRY:
            raise ValueError(f"provider {name!r} registered twice")
        _REGISTRY[name] = fn
        return fn
    return register


def get_provider(name: str) -> Provider:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise KeyError(f"unknown provider {name!r}, registered: {', '.join(all_providers())}") from None


def all_providers() -> List[str]:
    return sorted(_REGISTRY)


from . import abuseipdb, geolocation, ipqualityscore, virustotal  # noqa: E402,F401
