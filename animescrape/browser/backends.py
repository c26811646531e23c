"""Worker backends: the thing a worker handle actually fetches with.

A backend launches one session per worker handle, bound for its lifetime to
a proxy and a user agent. ``PlaywrightBackend`` drives headless Chromium for
JavaScript-heavy pages; ``HttpBackend`` uses one ``httpx.AsyncClient`` per
handle for plain HTTP and JSON APIs.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Chromium flags for containerized / headless operation
CHROMIUM_ARGS: list[str] = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-setuid-sandbox",
    "--no-first-run",
    "--no-zygote",
]

# Resource types not needed to read page content
BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font"})


class WorkerBackend(ABC):
    """Session factory and fetcher for worker handles."""

    async def start(self) -> None:
        """Acquire process-wide resources. Called once before ``launch``."""

    @abstractmethod
    async def launch(self, proxy_url: str | None, user_agent: str) -> Any:
        """Create a session bound to *proxy_url* and *user_agent*."""

    @abstractmethod
    async def fetch(self, session: Any, url: str, timeout: float) -> str:
        """Load *url* with *session* and return the response body."""

    @abstractmethod
    async def close(self, session: Any) -> None:
        """Dispose of a session. Must not raise for an already-closed session."""

    async def shutdown(self) -> None:
        """Release process-wide resources."""


# ---------------------------------------------------------------------------
# Playwright
# ---------------------------------------------------------------------------


def playwright_proxy(proxy_url: str) -> dict[str, str]:
    """Convert a proxy URL into Playwright's ``proxy`` launch option."""
    url = httpx.URL(proxy_url)
    server = f"{url.scheme}://{url.host}"
    if url.port is not None:
        server = f"{server}:{url.port}"
    option = {"server": server}
    if url.username:
        option["username"] = url.username
        option["password"] = url.password or ""
    return option


@dataclass
class BrowserSession:
    """A launched Chromium browser and the user agent its contexts use."""

    browser: Any  # playwright.async_api.Browser at runtime
    user_agent: str


class PlaywrightBackend(WorkerBackend):
    """Headless Chromium, one browser per handle with the proxy set at launch.

    Each fetch opens a fresh context (so cookies never leak between tasks),
    blocks images, stylesheets and fonts, waits for network idle and returns
    the rendered HTML.
    """

    def __init__(self, *, headless: bool = True) -> None:
        self._headless = headless
        self._playwright: Any = None  # Playwright instance (lazy import)

    async def start(self) -> None:
        from playwright.async_api import async_playwright

        if self._playwright is None:
            self._playwright = await async_playwright().start()
            logger.info("Playwright started")

    async def launch(self, proxy_url: str | None, user_agent: str) -> BrowserSession:
        assert self._playwright is not None, "Playwright not started"

        launch_kwargs: dict[str, Any] = {"headless": self._headless, "args": CHROMIUM_ARGS}
        if proxy_url is not None:
            launch_kwargs["proxy"] = playwright_proxy(proxy_url)
        browser = await self._playwright.chromium.launch(**launch_kwargs)
        return BrowserSession(browser=browser, user_agent=user_agent)

    async def fetch(self, session: BrowserSession, url: str, timeout: float) -> str:
        context = await session.browser.new_context(user_agent=session.user_agent)
        try:
            page = await context.new_page()
            await page.route("**/*", _block_heavy_resources)
            await page.goto(url, wait_until="networkidle", timeout=timeout * 1000)
            return await page.content()
        finally:
            await context.close()

    async def close(self, session: BrowserSession) -> None:
        try:
            await session.browser.close()
        except Exception:
            logger.debug("Error closing browser (may already be closed)", exc_info=True)

    async def shutdown(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("Playwright stopped")


async def _block_heavy_resources(route: Any) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


# ---------------------------------------------------------------------------
# httpx
# ---------------------------------------------------------------------------


class HttpBackend(WorkerBackend):
    """Plain HTTP backend: one ``httpx.AsyncClient`` per handle."""

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def launch(self, proxy_url: str | None, user_agent: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            proxy=proxy_url,
            headers={"User-Agent": user_agent, "Accept": "application/json, text/html;q=0.9"},
            follow_redirects=True,
            transport=self._transport,
        )

    async def fetch(self, session: httpx.AsyncClient, url: str, timeout: float) -> str:
        response = await session.get(url, timeout=timeout)
        response.raise_for_status()
        return response.text

    async def close(self, session: httpx.AsyncClient) -> None:
        await session.aclose()


def create_backend(name: str) -> WorkerBackend:
    """Build the backend selected by the ``worker_backend`` setting."""
    if name == "playwright":
        return PlaywrightBackend()
    if name == "http":
        return HttpBackend()
    raise ValueError(f"Unknown worker backend: {name!r}")
