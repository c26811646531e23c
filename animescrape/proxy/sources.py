"""Proxy-list parsing and user-agent loading.

Proxy sources are plain HTTP endpoints. Accepted bodies:

- text, one ``host:port`` (or full proxy URL) per line;
- a JSON list of such strings;
- a JSON object ``{"data": [{"ip": ..., "port": ...}, ...]}``.

Malformed entries are skipped.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES = ("http", "https", "socks4", "socks5")

_HOST_PORT = re.compile(
    r"^(?P<host>[A-Za-z0-9](?:[A-Za-z0-9.-]{0,251}[A-Za-z0-9])?):(?P<port>\d{1,5})$"
)

# Recent desktop browser UA strings, used when no user-agent file is configured
DEFAULT_USER_AGENTS: list[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
]


def normalize_proxy(raw: str, default_scheme: str = "http") -> str | None:
    """Return a proxy URL for *raw* or None if it is malformed.

    ``1.2.3.4:8080`` becomes ``http://1.2.3.4:8080``; full URLs with a
    supported scheme are kept (scheme and host lowercased).
    """
    value = raw.strip()
    if not value:
        return None

    if "://" in value:
        parts = urlsplit(value)
        scheme = parts.scheme.lower()
        if scheme not in SUPPORTED_SCHEMES or not parts.hostname:
            return None
        try:
            port = parts.port
        except ValueError:
            return None
        if port is None or not 0 < port < 65536:
            return None
        userinfo = parts.netloc.rsplit("@", 1)[0] + "@" if "@" in parts.netloc else ""
        return f"{scheme}://{userinfo}{parts.hostname.lower()}:{port}"

    match = _HOST_PORT.match(value)
    if match is None:
        return None
    port = int(match.group("port"))
    if not 0 < port < 65536:
        return None
    return f"{default_scheme}://{match.group('host').lower()}:{port}"


def parse_proxy_list(payload: str) -> list[str]:
    """Extract proxy URLs from a source response body, in order, deduplicated."""
    candidates: list[str] = []

    try:
        data = json.loads(payload)
    except ValueError:
        data = None

    if isinstance(data, dict) and isinstance(data.get("data"), list):
        for item in data["data"]:
            if isinstance(item, dict) and item.get("ip") and item.get("port"):
                candidates.append(f"{item['ip']}:{item['port']}")
    elif isinstance(data, list):
        candidates.extend(str(item) for item in data if isinstance(item, str))
    else:
        candidates.extend(payload.splitlines())

    proxies: list[str] = []
    seen: set[str] = set()
    skipped = 0
    for candidate in candidates:
        proxy = normalize_proxy(candidate)
        if proxy is None:
            if candidate.strip():
                skipped += 1
            continue
        if proxy not in seen:
            seen.add(proxy)
            proxies.append(proxy)

    if skipped:
        logger.debug("Skipped %d malformed proxy entries", skipped)
    return proxies


def load_user_agents(path: str | None) -> list[str]:
    """Load user agents from *path* (one per line), falling back to defaults."""
    if not path:
        return list(DEFAULT_USER_AGENTS)

    file = Path(path)
    if not file.exists():
        logger.warning("User agent file not found at %s, using defaults", path)
        return list(DEFAULT_USER_AGENTS)

    agents = [line.strip() for line in file.read_text(encoding="utf-8").splitlines() if line.strip()]
    if not agents:
        logger.warning("User agent file %s is empty, using defaults", path)
        return list(DEFAULT_USER_AGENTS)
    return agents
