import asyncio

from genpreview.preview_session import (
    LocatorStore,
    PreviewDebouncer,
    PreviewLocator,
    PreviewSession,
    PreviewUnavailable,
)

DOC = "<!DOCTYPE html><html><body>v1</body></html>"


class FlakyStore(LocatorStore):
    """Fails the first `failures` create calls."""

    def __init__(self, failures: int):
        super().__init__(base_url="http://preview.test")
        self.failures = failures

    def create(self, document):
        if self.failures:
            self.failures -= 1
            raise PreviewUnavailable("object URLs exhausted")
        return super().create(document)


def _session(**kwargs):
    return PreviewSession(store=LocatorStore(base_url="http://preview.test/"), **kwargs)


def test_materialize_creates_locator():
    session = _session()
    locator = session.materialize(DOC)
    assert locator.url == f"http://preview.test/blob/{locator.token}"
    assert session.store.resolve(locator.token) == DOC
    assert session.status() == {
        "locator": locator.url,
        "unavailable": False,
        "error": None,
        "creates": 1,
        "revokes": 0,
    }


def test_regenerate_releases_before_creating():
    session = _session()
    previous = session.materialize(DOC)
    for i in range(5):
        locator = session.regenerate(f"<p>v{i + 2}</p>")
        assert session.revokes == session.creates - 1
        assert session.store.live == 1
        assert session.store.resolve(previous.token) is None
        assert session.store.resolve(locator.token) == f"<p>v{i + 2}</p>"
        previous = locator


def test_materialize_on_live_session_regenerates():
    session = _session()
    first = session.materialize(DOC)
    second = session.materialize("<p>v2</p>")
    assert first.token != second.token
    assert session.store.live == 1
    assert session.revokes == 1


def test_dispose_is_idempotent():
    session = _session()
    locator = session.materialize(DOC)
    session.dispose()
    session.dispose()
    assert session.locator is None
    assert session.revokes == 1
    assert session.store.revokes == 1
    assert session.store.resolve(locator.token) is None


def test_dispose_without_locator():
    session = _session()
    session.dispose()
    assert session.revokes == 0


def test_invalid_document_keeps_last_locator():
    session = _session()
    locator = session.materialize(DOC)
    assert session.regenerate("") == locator
    assert session.regenerate(None) == locator
    assert session.error
    assert session.store.resolve(locator.token) == DOC
    assert session.creates == 1


def test_failing_builder_keeps_last_locator():
    session = _session()
    locator = session.materialize(DOC)

    def build():
        raise RuntimeError("assembler exploded")

    assert session.regenerate_from(build) == locator
    assert session.error == "RuntimeError: assembler exploded"
    assert session.store.resolve(locator.token) == DOC

    fresh = session.regenerate_from(lambda: "<p>fixed</p>")
    assert fresh != locator
    assert session.error is None


def test_materialize_retries_once():
    session = PreviewSession(store=FlakyStore(failures=1), retries=1)
    locator = session.materialize(DOC)
    assert locator is not None
    assert not session.unavailable
    assert session.creates == 1


def test_persistent_failure_marks_unavailable():
    session = PreviewSession(store=LocatorStore(capacity=0), retries=1)
    assert session.materialize(DOC) is None
    assert session.unavailable
    assert "Preview unavailable" in session.error
    assert session.status()["locator"] is None


class RejectingStore(LocatorStore):
    """Refuses documents that contain a marker."""

    def create(self, document):
        if "reject-me" in document:
            raise PreviewUnavailable("document rejected")
        return super().create(document)


def test_failed_regenerate_restores_last_good_document():
    session = PreviewSession(store=RejectingStore(base_url="http://preview.test"), retries=1)
    session.materialize(DOC)
    locator = session.regenerate("<p>reject-me</p>")
    assert locator is not None
    assert session.store.resolve(locator.token) == DOC
    assert session.store.live == 1
    assert session.unavailable
    assert session.revokes == session.creates - 1

    session.regenerate("<p>v3</p>")
    assert not session.unavailable
    assert session.error is None


def test_store_revoke_unknown_locator_is_noop():
    store = LocatorStore(base_url="http://preview.test")
    stray = PreviewLocator(token="missing", url="http://preview.test/blob/missing")
    assert store.revoke(stray) is False
    assert store.revokes == 0


def test_debouncer_coalesces_edits():
    session = _session()
    debouncer = PreviewDebouncer(session, delay=0.01)

    async def scenario():
        for i in range(3):
            debouncer.schedule({"main.js": f"console.log('edit-{i}')"}, "Demo")
            await asyncio.sleep(0)
        assert debouncer.pending
        await asyncio.sleep(0.1)

    asyncio.run(scenario())
    assert debouncer.fired == 1
    assert not debouncer.pending
    assert session.creates == 1
    document = session.store.resolve(session.locator.token)
    assert "edit-2" in document
    assert "edit-0" not in document


def test_debouncer_snapshots_files():
    session = _session()
    debouncer = PreviewDebouncer(session, delay=10)
    files = {"main.js": "first()"}

    async def scenario():
        debouncer.schedule(files)
        files["main.js"] = "mutated()"
        debouncer.flush()

    asyncio.run(scenario())
    document = session.store.resolve(session.locator.token)
    assert "first()" in document


def test_debouncer_cancel():
    session = _session()
    debouncer = PreviewDebouncer(session, delay=0.01)

    async def scenario():
        debouncer.schedule({"main.js": "x()"})
        debouncer.cancel()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert debouncer.fired == 0
    assert session.locator is None


def test_debouncer_builder_failure_keeps_preview():
    session = _session()
    session.materialize(DOC)

    def broken_assemble(*args):
        raise ValueError("bad bundle")

    debouncer = PreviewDebouncer(session, delay=10, assemble_fn=broken_assemble)

    async def scenario():
        debouncer.schedule({"main.js": "x()"})
        debouncer.flush()

    asyncio.run(scenario())
    assert session.store.resolve(session.locator.token) == DOC
    assert session.error == "ValueError: bad bundle"
