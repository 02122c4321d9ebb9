from contextlib import asynccontextmanager
import asyncio
import logging
import time
import uuid

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from genpreview.assembler import assemble, detect_framework, select_branch
from genpreview.code_validator import validate_bundle, validate_document
from genpreview.config import get_settings
from genpreview.extractor import ExtractedCodeArtifact, artifact_to_files, extract_or_fallback
from genpreview.preview_session import LocatorStore, PreviewDebouncer, PreviewSession
from genpreview.share import decode_share_payload

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

# Served documents may run scripts but never share an origin with the editor
SANDBOX_POLICY = "sandbox allow-scripts allow-forms allow-modals allow-popups"

# Shared by every session so /blob can resolve any live locator
_store = LocatorStore()

# session_id -> {"session": PreviewSession, "debouncer": PreviewDebouncer, "last_used": float}
_sessions: dict[str, dict] = {}


def sweep_idle_sessions(now: float | None = None) -> int:
    """Dispose sessions untouched for longer than session_idle_seconds. Returns how many went."""
    now = time.time() if now is None else now
    cutoff = now - get_settings().session_idle_seconds
    idle = [
        sid for sid, entry in _sessions.items()
        if entry["last_used"] < cutoff and not entry["debouncer"].pending
    ]
    for sid in idle:
        entry = _sessions.pop(sid)
        entry["debouncer"].cancel()
        entry["session"].dispose()
    if idle:
        logger.info(f"[sessions] swept {len(idle)} idle session(s) ({len(_sessions)} active)")
    return len(idle)


async def _session_monitor_loop():
    """Background task: periodically release sessions the editor abandoned."""
    while True:
        await asyncio.sleep(get_settings().session_sweep_seconds)
        try:
            sweep_idle_sessions()
        except Exception as e:
            logger.warning(f"[sessions] sweep failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    monitor = asyncio.create_task(_session_monitor_loop())
    yield
    monitor.cancel()
    # Shutdown: release every live locator
    for entry in list(_sessions.values()):
        entry["debouncer"].cancel()
        entry["session"].dispose()
    if _sessions:
        logger.info(f"[sessions] disposed {len(_sessions)} session(s) on shutdown")
    _sessions.clear()


app = FastAPI(title="Preview API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class ExtractRequest(BaseModel):
    raw: str
    prompt: str = ""


class ExtractResponse(BaseModel):
    artifact: ExtractedCodeArtifact
    files: dict[str, str]
    strategy: str | None = None
    error: str | None = None
    missing: list[str] = []
    fallback: bool = False


class BundleRequest(BaseModel):
    files: dict[str, str] = {}
    title: str = ""
    description: str = ""
    language: str | None = None


def _get_entry(session_id: str) -> dict:
    entry = _sessions.get(session_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Session not found")
    entry["last_used"] = time.time()
    return entry


def _sandboxed(document: str) -> HTMLResponse:
    return HTMLResponse(content=document, headers={"Content-Security-Policy": SANDBOX_POLICY})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "Preview backend is running"}


@app.get("/health")
async def health():
    return {"status": "ok", "sessions": len(_sessions), "live_locators": _store.live}


@app.post("/extract", response_model=ExtractResponse)
async def extract_endpoint(request: ExtractRequest):
    """Recover {html, css, js, description} from a raw model response."""
    artifact, result = extract_or_fallback(request.raw, request.prompt)
    return ExtractResponse(
        artifact=artifact,
        files=artifact_to_files(artifact),
        strategy=result.strategy,
        error=result.error.value if result.error else None,
        missing=result.missing,
        fallback=not result.ok,
    )


@app.post("/assemble")
async def assemble_endpoint(request: BundleRequest):
    """Assemble a file map into one preview document."""
    document = assemble(request.files, request.title, request.description, request.language)
    return {
        "document": document,
        "branch": select_branch(request.files),
        "framework": detect_framework(request.files),
        "validation": validate_document(document),
        "bundle": validate_bundle(request.files),
    }


@app.post("/sessions")
async def create_session():
    session_id = uuid.uuid4().hex
    session = PreviewSession(store=_store)
    _sessions[session_id] = {
        "session": session,
        "debouncer": PreviewDebouncer(session),
        "last_used": time.time(),
    }
    logger.info(f"[sessions] created {session_id[:12]} ({len(_sessions)} active)")
    return {"session_id": session_id, **session.status()}


@app.get("/sessions/{session_id}")
async def get_session(session_id: str):
    entry = _get_entry(session_id)
    return {
        "session_id": session_id,
        "pending": entry["debouncer"].pending,
        **entry["session"].status(),
    }


@app.put("/sessions/{session_id}/files")
async def update_session_files(session_id: str, request: BundleRequest):
    """Record an edit; the preview regenerates once edits pause."""
    entry = _get_entry(session_id)
    debouncer = entry["debouncer"]
    debouncer.schedule(request.files, request.title, request.description, request.language)
    return {"session_id": session_id, "scheduled": True, "delay": debouncer.delay}


@app.post("/sessions/{session_id}/regenerate")
async def regenerate_session(session_id: str, request: BundleRequest):
    """Regenerate immediately, dropping any pending debounced edit."""
    entry = _get_entry(session_id)
    entry["debouncer"].cancel()
    session = entry["session"]
    session.regenerate_from(
        lambda: assemble(request.files, request.title, request.description, request.language)
    )
    return {"session_id": session_id, **session.status()}


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    entry = _sessions.pop(session_id, None)
    if not entry:
        raise HTTPException(status_code=404, detail="Session not found")
    entry["debouncer"].cancel()
    entry["session"].dispose()
    logger.info(f"[sessions] disposed {session_id[:12]} ({len(_sessions)} active)")
    return {"session_id": session_id, "disposed": True}


@app.get("/blob/{token}")
async def serve_blob(token: str):
    """Serve the document behind a live locator."""
    document = _store.resolve(token)
    if document is None:
        raise HTTPException(status_code=404, detail="Preview not found or revoked")
    return _sandboxed(document)


@app.get("/sandbox")
async def sandbox_page(data: str):
    """Standalone preview of a shared project."""
    try:
        project = decode_share_payload(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _sandboxed(assemble(project.files, project.title, project.description))
