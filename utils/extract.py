import re
from typing import List, Optional

from schemas import IndicatorSet

IPV4 = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")
FROM_ANGLE = re.compile(r"From:.*?<([^>]+)>", re.IGNORECASE)
FROM_BARE = re.compile(r"From:.*?([^\s]+@[^\s]+)", re.IGNORECASE)
DOMAIN = re.compile(r"@([a-zA-Z0-9.-]+)")
NOT_DOMAIN_CHAR = re.compile(r"[^a-zA-Z0-9.-]")

SENDER_MARKER = "From:"
TRACE_MARKER = "Received:"
PRIVATE_PREFIXES = ("10.", "172.", "192.168.")
LOOPBACK = "127.0.0.1"


def has_required_markers(text: Optional[str]) -> bool:
    return bool(text) and SENDER_MARKER in text and TRACE_MARKER in text


def extract_ips(text: str) -> List[str]:
    """Dotted quads in first-seen order, duplicates dropped. Octets are not range-checked."""
    return list(dict.fromkeys(IPV4.findall(text)))


def extract_sender_email(text: str) -> Optional[str]:
    m = FROM_ANGLE.search(text) or FROM_BARE.search(text)
    return m.group(1).strip() if m else None


def extract_domain(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    m = DOMAIN.search(email)
    if not m:
        return None
    return NOT_DOMAIN_CHAR.sub("", m.group(1)) or None


def extract_indicators(text: str) -> IndicatorSet:
    email = extract_sender_email(text)
    return IndicatorSet(ips=tuple(extract_ips(text)), email=email, domain=extract_domain(email))


def is_private_ip(ip: str) -> bool:
    return ip.startswith(PRIVATE_PREFIXES) or ip == LOOPBACK
