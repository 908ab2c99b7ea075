from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

logger = logging.getLogger("MewCompanion")

OFFICIAL_OPENAI_BASE_URL = "https://api.openai.com/v1"


@dataclass(slots=True)
class ProbeResult:
    ok: bool
    status_code: int
    url: str
    detail: str = ""


def normalize_base_url(base_url: str) -> str:
    normalized = (base_url or "").strip().rstrip("/")
    if not normalized:
        return OFFICIAL_OPENAI_BASE_URL
    for suffix in ("/chat/completions", "/responses", "/models"):
        if normalized.endswith(suffix):
            normalized = normalized[: -len(suffix)]
            break
    if normalized.endswith("/v1"):
        return normalized
    return f"{normalized}/v1"


def is_valid_http_url(url: str) -> bool:
    parsed = urlsplit((url or "").strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def probe_endpoint(
    base_url: str,
    api_key: str = "",
    *,
    timeout: float = 8.0,
    transport=None,
) -> ProbeResult:
    """
    Lightweight reachability check of an OpenAI-compatible endpoint.

    Sends ``GET <base>/models``; HTTP and network failures are reported in the
    result instead of raised.
    """
    import httpx

    probe_url = f"{normalize_base_url(base_url)}/models"
    if not is_valid_http_url(probe_url):
        return ProbeResult(ok=False, status_code=0, url=probe_url, detail="invalid base URL")

    headers = {"Accept": "application/json"}
    key = (api_key or "").strip()
    if key:
        headers["Authorization"] = f"Bearer {key}"

    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.get(probe_url, headers=headers)
    except httpx.HTTPError as exc:
        logger.info("[Probe] Endpoint unreachable: url=%s error=%s", probe_url, exc)
        return ProbeResult(ok=False, status_code=0, url=probe_url, detail=str(exc))

    if response.is_success:
        return ProbeResult(ok=True, status_code=response.status_code, url=probe_url)
    preview = response.text[:180].strip()
    logger.info("[Probe] Endpoint rejected probe: url=%s status=%d", probe_url, response.status_code)
    return ProbeResult(ok=False, status_code=response.status_code, url=probe_url, detail=preview)
