"""
Preview lifecycle — backs assembled documents with revocable locators.

LocatorStore is the in-memory object-URL registry the render host reads from.
A PreviewSession owns at most one live locator at a time and always releases
the old one before creating the next. PreviewDebouncer coalesces bursts of
edits into a single regeneration.
"""

import asyncio
import logging
import uuid
from typing import Callable

from pydantic import BaseModel, ConfigDict

from genpreview.assembler import assemble
from genpreview.config import get_settings

logger = logging.getLogger(__name__)


class PreviewLocator(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    url: str


class PreviewUnavailable(Exception):
    pass


# ---------------------------------------------------------------------------
# LocatorStore
# ---------------------------------------------------------------------------

class LocatorStore:
    def __init__(self, base_url: str | None = None, capacity: int | None = None):
        self.base_url = (base_url or get_settings().preview_base_url).rstrip("/")
        self.capacity = capacity
        self._documents: dict[str, str] = {}
        self.creates = 0
        self.revokes = 0

    def create(self, document: str) -> PreviewLocator:
        if not isinstance(document, str) or not document.strip():
            raise PreviewUnavailable("Cannot back a locator with an empty document")
        if self.capacity is not None and len(self._documents) >= self.capacity:
            raise PreviewUnavailable(f"Locator store full ({self.capacity} live)")
        token = uuid.uuid4().hex
        self._documents[token] = document
        self.creates += 1
        return PreviewLocator(token=token, url=f"{self.base_url}/blob/{token}")

    def revoke(self, locator: PreviewLocator) -> bool:
        """Release a locator's document. Unknown or already revoked locators are ignored."""
        if self._documents.pop(locator.token, None) is None:
            return False
        self.revokes += 1
        return True

    def resolve(self, token: str) -> str | None:
        return self._documents.get(token)

    @property
    def live(self) -> int:
        return len(self._documents)


# ---------------------------------------------------------------------------
# PreviewSession
# ---------------------------------------------------------------------------

class PreviewSession:
    def __init__(self, store: LocatorStore | None = None, retries: int | None = None):
        self.store = store or LocatorStore()
        self.retries = get_settings().materialize_retries if retries is None else retries
        self.locator: PreviewLocator | None = None
        # Document behind the current locator, kept for restoring after a failed regenerate
        self._document: str | None = None
        self.unavailable = False
        self.error: str | None = None
        self.creates = 0
        self.revokes = 0

    def _create(self, document: str) -> PreviewLocator | None:
        """Create a locator, retrying per settings. Sets `unavailable` on persistent failure."""
        last_error = None
        for attempt in range(1 + self.retries):
            try:
                locator = self.store.create(document)
            except PreviewUnavailable as e:
                last_error = e
                logger.warning(f"[preview] materialize attempt {attempt + 1} failed: {e}")
                continue
            self.creates += 1
            self._document = document
            self.unavailable = False
            self.error = None
            return locator

        self.unavailable = True
        self.error = f"Preview unavailable: {last_error}"
        logger.error(f"[preview] {self.error}")
        return None

    def _restore(self, document: str) -> PreviewLocator | None:
        """One attempt to re-back the last good document. Leaves `unavailable` set."""
        try:
            locator = self.store.create(document)
        except PreviewUnavailable as e:
            logger.error(f"[preview] could not restore last preview: {e}")
            self._document = None
            return None
        self.creates += 1
        logger.warning(f"[preview] restored last good preview as {locator.token[:12]}")
        return locator

    def _release(self):
        if self.locator is None:
            return
        self.store.revoke(self.locator)
        self.revokes += 1
        logger.debug(f"[preview] released {self.locator.token[:12]}")
        self.locator = None

    def materialize(self, document: str) -> PreviewLocator | None:
        """Back `document` with a new locator. With one already live this is a regenerate."""
        if self.locator is not None:
            return self.regenerate(document)
        self.locator = self._create(document)
        return self.locator

    def regenerate(self, document: str) -> PreviewLocator | None:
        """
        Release the current locator, then create one for `document`.

        A document that is not a non-empty string is treated as an upstream
        failure: the current locator is kept and `error` is set.
        """
        if not isinstance(document, str) or not document.strip():
            self.error = "Document construction produced no output"
            logger.warning(f"[preview] {self.error} — keeping last preview")
            return self.locator

        previous = self._document
        self._release()
        self.locator = self._create(document)
        if self.locator is None and previous is not None:
            self.locator = self._restore(previous)
        elif self.locator:
            logger.info(
                f"[preview] regenerated {self.locator.token[:12]} "
                f"(creates={self.creates} revokes={self.revokes})"
            )
        return self.locator

    def regenerate_from(self, build: Callable[[], str]) -> PreviewLocator | None:
        """Build a document and regenerate; a failing build keeps the last preview."""
        try:
            document = build()
        except Exception as e:
            self.error = f"{type(e).__name__}: {e}"
            logger.exception("[preview] document build failed, keeping last preview")
            return self.locator
        return self.regenerate(document)

    def dispose(self):
        """Release the current locator, if any. Safe to call repeatedly."""
        self._release()
        self._document = None

    def status(self) -> dict:
        return {
            "locator": self.locator.url if self.locator else None,
            "unavailable": self.unavailable,
            "error": self.error,
            "creates": self.creates,
            "revokes": self.revokes,
        }


# ---------------------------------------------------------------------------
# PreviewDebouncer
# ---------------------------------------------------------------------------

class PreviewDebouncer:
    """
    Coalesces edits into one assemble-and-regenerate per quiet window.

    schedule() must be called from a running event loop. A new call replaces
    the pending one; nothing is queued.
    """

    def __init__(
        self,
        session: PreviewSession,
        delay: float | None = None,
        assemble_fn: Callable[..., str] = assemble,
    ):
        self.session = session
        self.delay = get_settings().debounce_seconds if delay is None else delay
        self.assemble_fn = assemble_fn
        self._handle: asyncio.TimerHandle | None = None
        self._pending: tuple | None = None
        self.fired = 0

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def schedule(self, files: dict, title: str = "", description: str = "", language_tag: str | None = None):
        if self._handle is not None:
            self._handle.cancel()
            logger.debug("[debounce] replaced pending regeneration")
        self._pending = (dict(files), title, description, language_tag)
        self._handle = asyncio.get_running_loop().call_later(self.delay, self._fire)

    def _fire(self):
        self._handle = None
        if self._pending is None:
            return
        files, title, description, language_tag = self._pending
        self._pending = None
        self.fired += 1
        self.session.regenerate_from(
            lambda: self.assemble_fn(files, title, description, language_tag)
        )

    def flush(self):
        """Run the pending regeneration now."""
        if self._handle is not None:
            self._handle.cancel()
        self._fire()

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending = None
