"""Proxy management package: rotation, refresh from sources, and health checks."""

from animescrape.proxy.manager import ProxyManager
from animescrape.proxy.types import ProxyEntry, ProxyHealth

__all__ = ["ProxyEntry", "ProxyHealth", "ProxyManager"]
