"""Worker pool and worker backends."""

from animescrape.browser.backends import (
    CHROMIUM_ARGS,
    HttpBackend,
    PlaywrightBackend,
    WorkerBackend,
    create_backend,
)
from animescrape.browser.pool import WorkerHandle, WorkerPool

__all__ = [
    "CHROMIUM_ARGS",
    "HttpBackend",
    "PlaywrightBackend",
    "WorkerBackend",
    "WorkerHandle",
    "WorkerPool",
    "create_backend",
]
