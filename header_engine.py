import argparse
import asyncio
import json
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Tuple

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib   # fallback for <=3.10

from dotenv import load_dotenv

from providers import abuseipdb, all_providers, get_provider, ipqualityscore, virustotal
from providers import geolocation as geolocation_provider
from providers.narrative import NarrativeAnalyzer
from schemas import (
    AbuseScore,
    AnalysisReport,
    Config,
    DomainReputation,
    EmailQuality,
    GeoLocation,
    IndicatorSet,
    Lookup,
    Summary,
)
from utils.extract import extract_indicators, has_required_markers
from utils.http import Http

log = logging.getLogger(__name__)

INVALID_HEADER_MESSAGE = "Invalid or incomplete email header provided."
INTERNAL_ERROR_MESSAGE = "Internal Server Error"
NO_EMAIL_MESSAGE = "No email detected."
NO_DOMAIN_LABEL = "No valid domain detected"
EMAIL_DONE_MESSAGE = "Email analysis completed."
SUMMARY_CHARS = 300

API_KEY_ENV = {
    "abuseipdb": "ABUSEIPDB_API_KEY",
    "ipqualityscore": "IPQUALITY_API_KEY",
    "virustotal": "VIRUSTOTAL_API_KEY",
    "openai": "OPENAI_API_KEY",
}


class HeaderEngineError(Exception):
    pass


class InvalidHeaderError(HeaderEngineError):
    """Header text lacks the From:/Received: markers."""


def load_config(path: str = "config.toml") -> Config:
    """Defaults, shallow-merged with config.toml if present, API keys overridden from env."""
    cfg: Dict[str, Any] = {
        "api_keys": {p: None for p in API_KEY_ENV},
        "network": {
            "timeout_seconds": 15,
            "retries": 1,
            "backoff_seconds": 1.5,
        },
        "narrative": {},
    }
    if os.path.exists(path):
        with open(path, "rb") as f:
            user = tomllib.load(f)
        # shallow merge
        for k, v in user.items():
            if isinstance(v, dict) and k in cfg:
                cfg[k].update(v)
            else:
                cfg[k] = v
    for name, env in API_KEY_ENV.items():
        value = os.getenv(env)
        if value:
            cfg["api_keys"][name] = value
    return Config.model_validate(cfg)


def build_http(cfg: Config) -> Http:
    net = cfg.network
    return Http(timeout=net.timeout_seconds, retries=net.retries, backoff=net.backoff_seconds)


def build_narrative(cfg: Config, http: Http) -> NarrativeAnalyzer:
    n = cfg.narrative
    # the analyzer owns its attempt loop, so its transport never retries
    return NarrativeAnalyzer(cfg.api_keys.openai, http.using(http.executor, retries=1),
                             model=n.model, max_tokens=n.max_tokens,
                             attempts=n.attempts, url=n.url)


async def gather_isolated(calls: Sequence[Tuple[Awaitable, Any]]) -> List[Any]:
    """Await every call concurrently and return results in submission order.

    Each entry pairs an awaitable with the value to use if it raises, so one
    failing call never cancels or replaces the result of another.
    """
    results = await asyncio.gather(*(c for c, _ in calls), return_exceptions=True)
    out: List[Any] = []
    for (_, fallback), res in zip(calls, results):
        if isinstance(res, Exception):
            log.warning("Lookup raised %s: %s", type(res).__name__, res)
            out.append(fallback)
        elif isinstance(res, BaseException):
            raise res
        else:
            out.append(res)
    return out


def truncate(text: str, limit: int = SUMMARY_CHARS) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def build_summary(geolocation: Sequence[Lookup[GeoLocation]], abuse: Sequence[Lookup[AbuseScore]],
                  email: Lookup[EmailQuality], domain: Lookup[DomainReputation], verdict: str) -> Summary:
    if email.ok and email.data.valid:
        email_status = (f"Valid, with {email.data.deliverability} deliverability. "
                        f"Fraud score is {email.data.fraud_score}.")
    else:
        email_status = "Invalid email address."
    # "N/A" covers both an unchecked and a signal-free domain
    if domain.ok and domain.data.reputation == "N/A":
        domain_status = "Clean domain. No malicious activity reported."
    else:
        domain_status = "Potential risk detected."
    return Summary(
        email_status=email_status,
        domain_status=domain_status,
        geolocation_status=("Geolocation unavailable for some IPs."
                            if any(not g.ok for g in geolocation) else "Geolocation successful."),
        abuse_reports_status=("Abuse data unavailable for some IPs."
                              if any(not a.ok for a in abuse) else "No abuse reports detected."),
        ai_analysis_summary=truncate(verdict),
    )


def _lookup_calls(indicators: IndicatorSet, header_text: str, cfg: Config, http: Http,
                  narrative: NarrativeAnalyzer) -> List[Tuple[Awaitable, Any]]:
    """Per-IP geolocation, per-IP abuse, narrative, then email and domain when present."""
    keys = cfg.api_keys
    geo, abuse_check = get_provider("geolocation"), get_provider("abuseipdb")
    calls: List[Tuple[Awaitable, Any]] = []
    for ip in indicators.ips:
        calls.append((geo(ip, None, http), Lookup[GeoLocation].failure(ip, geolocation_provider.FETCH_FAILED)))
    for ip in indicators.ips:
        calls.append((abuse_check(ip, keys.abuseipdb, http), Lookup[AbuseScore].failure(ip, abuseipdb.CHECK_FAILED)))
    calls.append((narrative.analyze(header_text), narrative.fallback))
    if indicators.email:
        calls.append((get_provider("ipqualityscore")(indicators.email, keys.ipqualityscore, http),
                      Lookup[EmailQuality].failure(indicators.email, ipqualityscore.FETCH_FAILED)))
    if indicators.domain:
        calls.append((get_provider("virustotal")(indicators.domain, keys.virustotal, http),
                      Lookup[DomainReputation].failure(indicators.domain, virustotal.CHECK_FAILED)))
    return calls


async def analyze_header(header_text: Optional[str], cfg: Config, http: Http,
                         narrative: Optional[NarrativeAnalyzer] = None) -> AnalysisReport:
    if not has_required_markers(header_text):
        raise InvalidHeaderError(INVALID_HEADER_MESSAGE)
    indicators = extract_indicators(header_text)
    log.info("Extracted %d IP(s), email=%s, domain=%s",
             len(indicators.ips), indicators.email, indicators.domain)

    n = len(indicators.ips)
    width = 2 * n + 1 + bool(indicators.email) + bool(indicators.domain)
    # one worker per call, so no lookup waits for a free thread behind a slow upstream
    with ThreadPoolExecutor(max_workers=width, thread_name_prefix="lookup") as pool:
        lookup_http = http.using(pool)
        calls = _lookup_calls(indicators, header_text, cfg, lookup_http,
                              narrative or build_narrative(cfg, lookup_http))
        results = await gather_isolated(calls)

    geolocation, abuse, verdict = results[:n], results[n:2 * n], results[2 * n]
    rest = iter(results[2 * n + 1:])
    if indicators.email:
        email = next(rest)
    else:
        email = Lookup[EmailQuality].failure(None, NO_EMAIL_MESSAGE)
    if indicators.domain:
        domain = next(rest)
    else:
        domain = Lookup[DomainReputation].success(None, DomainReputation(domain=NO_DOMAIN_LABEL))

    log.debug("Full narrative verdict: %s", verdict)
    return AnalysisReport(
        generated_at=datetime.now(timezone.utc),
        indicators=indicators,
        geolocation=geolocation,
        abuse=abuse,
        email=email,
        domain=domain,
        verdict=verdict,
        summary=build_summary(geolocation, abuse, email, domain, verdict),
    )


def _email_view(email: Lookup[EmailQuality]) -> Dict[str, Any]:
    if not email.ok:
        return {"valid": False, "error": email.error}
    q = email.data
    return {
        "valid": q.valid,
        "disposable": q.disposable,
        "deliverability": q.deliverability,
        "fraudScore": q.fraud_score,
        "domainAge": q.domain_age,
        "message": EMAIL_DONE_MESSAGE,
    }


def _domain_view(domain: Lookup[DomainReputation]) -> Dict[str, Any]:
    if not domain.ok:
        return {"domain": domain.indicator, "error": domain.error}
    d = domain.data
    return {"domain": d.domain, "reputation": d.reputation, "maliciousVotes": d.malicious_votes}


def to_response(report: AnalysisReport) -> Dict[str, Any]:
    rows = []
    for g, a in zip(report.geolocation, report.abuse):
        rows.append({
            "ip": g.indicator,
            "geolocation": g.data.label() if g.ok else g.error,
            "abuseConfidenceScore": a.data.abuse_confidence_score if a.ok else a.error,
        })
    return {
        "summary": report.summary.model_dump(),
        "detailed_analysis": {
            "extractedIPs": rows,
            "email": _email_view(report.email),
            "domain": _domain_view(report.domain),
            "aiAnalysis": {"details": report.verdict},
        },
    }


async def handle_request(payload: Any, cfg: Config, http: Http,
                         narrative: Optional[NarrativeAnalyzer] = None) -> Tuple[int, Dict[str, Any]]:
    """Map a ``{"headerText": ...}`` request to an HTTP status and JSON body."""
    try:
        if not isinstance(payload, dict):
            raise TypeError(f"request body must be a JSON object, got {type(payload).__name__}")
        header_text = payload.get("headerText")
        if not isinstance(header_text, str):
            header_text = None
        report = await analyze_header(header_text, cfg, http, narrative)
        return 200, to_response(report)
    except InvalidHeaderError:
        return 400, {"error": INVALID_HEADER_MESSAGE}
    except Exception as e:
        log.error("Unhandled error: %s", e, exc_info=True)
        return 500, {"error": INTERNAL_ERROR_MESSAGE, "details": str(e)}


def to_markdown(report: AnalysisReport) -> str:
    s = report.summary
    lines: List[str] = []
    lines.append(f"# Email Header Analysis\n\nGenerated: {report.generated_at.isoformat()}\n")
    lines.append("## Summary\n")
    lines.append(f"- **Email:** {s.email_status}")
    lines.append(f"- **Domain:** {s.domain_status}")
    lines.append(f"- **Geolocation:** {s.geolocation_status}")
    lines.append(f"- **Abuse reports:** {s.abuse_reports_status}")
    lines.append("")
    lines.append("## IP addresses\n")
    if not report.geolocation:
        lines.append("_No IP addresses found._")
    for g, a in zip(report.geolocation, report.abuse):
        where = g.data.label() if g.ok else g.error
        score = a.data.abuse_confidence_score if a.ok else a.error
        lines.append(f"- **{g.indicator}** → {where}; abuse confidence: {score}")
    lines.append("")
    lines.append("## Sender\n")
    lines.append(f"- email: {report.indicators.email or 'n/a'}")
    email = _email_view(report.email)
    lines.append(f"  - {email.get('error') or json.dumps(email)}")
    domain = _domain_view(report.domain)
    lines.append(f"- domain: {domain['domain']}")
    lines.append(f"  - {domain.get('error') or json.dumps(domain)}")
    lines.append("")
    lines.append("## AI analysis\n")
    lines.append(report.verdict)
    lines.append("")
    return "\n".join(lines)


def ensure_parent(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Email Header Enrichment Engine")
    ap.add_argument("--input", required=True, help="Text file holding raw email headers")
    ap.add_argument("--config", default="config.toml")
    ap.add_argument("--out-json", default="out/analysis.json")
    ap.add_argument("--out-md", default="out/summary.md")
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    load_dotenv()
    cfg = load_config(args.config)
    http = build_http(cfg)
    log.info("Enrichment providers: %s", ", ".join(all_providers()))

    with open(args.input, "r", encoding="utf-8") as f:
        header_text = f.read()

    try:
        report = asyncio.run(analyze_header(header_text, cfg, http))
    except InvalidHeaderError as e:
        print(str(e), file=sys.stderr)
        return 2

    ensure_parent(args.out_json)
    ensure_parent(args.out_md)

    with open(args.out_json, "w", encoding="utf-8") as f:
        json.dump(to_response(report), f, ensure_ascii=False, indent=2)

    with open(args.out_md, "w", encoding="utf-8") as f:
        f.write(to_markdown(report))

    print(f"Saved → {args.out_json}\nSaved → {args.out_md}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
