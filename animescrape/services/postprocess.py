"""Generic per-kind post-processing of raw fetched content.

Site-specific parsing is not done here. ``search`` and ``metadata`` results
are decoded from JSON when possible; ``media_links`` are pulled out of the
page with a URL pattern and ordered shortest first; ``page`` content is
returned untouched. A ``ValueError`` raised here fails the attempt and is
retried like a network error.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from animescrape.models.requests import RequestKind

logger = logging.getLogger(__name__)

MEDIA_LINK_PATTERN = re.compile(r"""(https?://[^\s'"<>]+\.(?:m3u8|mp4|mkv|avi))""", re.IGNORECASE)


def extract_media_links(content: str) -> list[str]:
    """Return unique media URLs in *content*, shortest first."""
    seen: set[str] = set()
    links: list[str] = []
    for match in MEDIA_LINK_PATTERN.findall(content):
        if match not in seen:
            seen.add(match)
            links.append(match)
    return sorted(links, key=len)


def postprocess(kind: RequestKind, content: str) -> Any:
    """Turn raw *content* into the result for *kind*."""
    if kind == RequestKind.MEDIA_LINKS:
        return extract_media_links(content)

    if kind == RequestKind.METADATA:
        try:
            return json.loads(content)
        except ValueError as exc:
            raise ValueError(f"Metadata response is not valid JSON: {exc}") from exc

    if kind == RequestKind.SEARCH:
        try:
            return json.loads(content)
        except ValueError:
            logger.debug("Search response is not JSON, returning raw content")
            return content

    return content
