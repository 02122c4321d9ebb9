import time

import pytest
from fastapi.testclient import TestClient

from genpreview import main
from genpreview.config import get_settings
from genpreview.share import encode_share_payload

client = TestClient(main.app)

RAW = (
    'Here is code: ```json\n{"html":"<h1>Hi</h1>","css":"h1{color:blue}",'
    '"js":"console.log(1)","description":"demo"}\n```'
)
BUNDLE = {"files": {"index.html": "<html><head></head><body><p>v1</p></body></html>"}, "title": "Demo"}


@pytest.fixture(autouse=True)
def clean_sessions():
    yield
    for entry in main._sessions.values():
        entry["debouncer"].cancel()
        entry["session"].dispose()
    main._sessions.clear()


def _token(url: str) -> str:
    return url.rsplit("/", 1)[-1]


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_extract():
    body = client.post("/extract", json={"raw": RAW}).json()
    assert body["strategy"] == "backtick_to_json"
    assert body["fallback"] is False
    assert body["artifact"]["description"] == "demo"
    assert body["files"] == {
        "index.html": "<h1>Hi</h1>",
        "style.css": "h1{color:blue}",
        "script.js": "console.log(1)",
    }


def test_extract_falls_back():
    body = client.post("/extract", json={"raw": "no code", "prompt": "weather card"}).json()
    assert body["fallback"] is True
    assert body["error"] == "no_valid_structure_found"
    assert body["artifact"]["description"] == "Generated UI for: weather card"


def test_assemble():
    body = client.post("/assemble", json={"files": {"App.jsx": "function App() { return <p/>; }"}}).json()
    assert body["branch"] == "components"
    assert body["framework"] == "react"
    assert body["validation"]["valid"]
    assert body["document"].count("Content-Security-Policy") == 1


def test_session_lifecycle():
    session_id = client.post("/sessions").json()["session_id"]
    assert client.get(f"/sessions/{session_id}").json()["locator"] is None

    first = client.post(f"/sessions/{session_id}/regenerate", json=BUNDLE).json()
    token = _token(first["locator"])
    served = client.get(f"/blob/{token}")
    assert served.status_code == 200
    assert served.headers["content-type"].startswith("text/html")
    policy = served.headers["content-security-policy"]
    assert policy.startswith("sandbox allow-scripts")
    assert "allow-same-origin" not in policy
    assert "<p>v1</p>" in served.text

    second = client.post(f"/sessions/{session_id}/regenerate", json=BUNDLE).json()
    assert second["creates"] == 2
    assert second["revokes"] == 1
    assert client.get(f"/blob/{token}").status_code == 404

    assert client.delete(f"/sessions/{session_id}").json()["disposed"] is True
    assert client.get(f"/blob/{_token(second['locator'])}").status_code == 404
    assert client.get(f"/sessions/{session_id}").status_code == 404
    assert client.delete(f"/sessions/{session_id}").status_code == 404


def test_file_updates_are_debounced():
    session_id = client.post("/sessions").json()["session_id"]
    response = client.put(f"/sessions/{session_id}/files", json=BUNDLE)
    assert response.json()["scheduled"] is True
    assert client.get(f"/sessions/{session_id}").json()["pending"] is True

    # An explicit regenerate supersedes the pending edit
    client.post(f"/sessions/{session_id}/regenerate", json=BUNDLE)
    status = client.get(f"/sessions/{session_id}").json()
    assert status["pending"] is False
    assert status["creates"] == 1


def test_idle_sessions_are_swept():
    idle_id = client.post("/sessions").json()["session_id"]
    token = _token(client.post(f"/sessions/{idle_id}/regenerate", json=BUNDLE).json()["locator"])
    later = time.time() + get_settings().session_idle_seconds + 1

    # Touched just before the sweep, so it stays
    active_id = client.post("/sessions").json()["session_id"]
    main._sessions[active_id]["last_used"] = later

    assert main.sweep_idle_sessions(now=later) == 1
    assert client.get(f"/sessions/{idle_id}").status_code == 404
    assert client.get(f"/blob/{token}").status_code == 404
    assert client.get(f"/sessions/{active_id}").status_code == 200


def test_sweep_keeps_recent_sessions():
    session_id = client.post("/sessions").json()["session_id"]
    assert main.sweep_idle_sessions() == 0
    assert client.get(f"/sessions/{session_id}").status_code == 200


def test_unknown_session():
    assert client.put("/sessions/nope/files", json=BUNDLE).status_code == 404
    assert client.post("/sessions/nope/regenerate", json=BUNDLE).status_code == 404


def test_sandbox_page():
    data = encode_share_payload({"files": {"main.js": "boot()"}, "title": "Shared"})
    response = client.get("/sandbox", params={"data": data})
    assert response.status_code == 200
    assert "<title>Shared</title>" in response.text
    assert "boot()" in response.text
    assert "allow-same-origin" not in response.headers["content-security-policy"]


def test_sandbox_rejects_bad_payload():
    assert client.get("/sandbox", params={"data": "%%%"}).status_code == 400
