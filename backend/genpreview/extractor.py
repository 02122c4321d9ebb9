"""
Response extractor — recovers {html, css, js, description} from raw model text.
Pure Python, no AI.

The model is asked for a JSON object but replies inconsistently: fenced or
unfenced, backtick-delimited values instead of JSON strings, raw newlines and
control bytes inside strings. Four strategies are tried in order and the
first one that yields html, css and js wins:

  1. backtick_fields      — regex "field": `value` anywhere in the text
  2. backtick_to_json     — rewrite backtick values to JSON strings, then parse
  3. direct_json          — locate a JSON block, repair it, then parse
  4. regex_fields         — six permissive patterns per field, manual unescape

Known limitation: a backtick inside a backtick-delimited value (e.g. a JS
template literal) ends the value early in strategies 1-3.
"""

import html
import json
import logging
import re
from enum import Enum
from typing import Callable

from pydantic import BaseModel, ConfigDict

from genpreview.config import get_settings
from genpreview.response_cleaning import (
    convert_stray_backticks,
    escape_control_characters,
    locate_json_candidates,
    normalize_backticks,
    unescape_value,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("html", "css", "js")
ALL_FIELDS = REQUIRED_FIELDS + ("description",)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class ExtractedCodeArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    html: str
    css: str
    js: str
    description: str


class ExtractionError(str, Enum):
    NO_VALID_STRUCTURE_FOUND = "no_valid_structure_found"
    PARTIAL_FIELDS_MISSING = "partial_fields_missing"


class ExtractionResult(BaseModel):
    artifact: ExtractedCodeArtifact | None = None
    error: ExtractionError | None = None
    strategy: str | None = None
    missing: list[str] = []

    @property
    def ok(self) -> bool:
        return self.artifact is not None


class ExtractionFailed(Exception):
    def __init__(self, error: ExtractionError, missing: list[str] | None = None):
        self.error = error
        self.missing = missing or []
        detail = f" (missing: {', '.join(self.missing)})" if self.missing else ""
        super().__init__(f"{error.value}{detail}")


# ---------------------------------------------------------------------------
# Strategies: each takes the raw text and returns the fields it located
# ---------------------------------------------------------------------------

def _present(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _fields_from_object(obj) -> dict | None:
    if not isinstance(obj, dict):
        return None
    found = {f: obj[f] for f in ALL_FIELDS if _present(obj.get(f))}
    return found or None


def _parse_first(candidates: list[str], repair: Callable[[str], str] | None = None) -> dict | None:
    """Parse candidates in order; prefer the first that carries every required field."""
    partial = None
    for candidate in candidates:
        text = repair(candidate) if repair else candidate
        try:
            obj = json.loads(text)
        except ValueError:
            continue
        found = _fields_from_object(obj)
        if not found:
            continue
        if all(f in found for f in REQUIRED_FIELDS):
            return found
        partial = partial or found
    return partial


def extract_backtick_fields(text: str) -> dict | None:
    """Strategy 1: independent "field": `value` matches, field order irrelevant."""
    found = {}
    for field in ALL_FIELDS:
        m = re.search(rf'"\s*{field}\s*"\s*:\s*`([^`]*)`', text, re.IGNORECASE)
        if m and _present(m.group(1)):
            found[field] = m.group(1)
    return found or None


def extract_backtick_to_json(text: str) -> dict | None:
    """Strategy 2: rewrite every backtick value into a JSON string, then parse."""
    return _parse_first(locate_json_candidates(normalize_backticks(text)))


def _repair_json(candidate: str) -> str:
    return escape_control_characters(convert_stray_backticks(candidate))


def extract_direct_json(text: str) -> dict | None:
    """Strategy 3: locate a JSON block in the untouched text and repair it before parsing."""
    return _parse_first(locate_json_candidates(text), repair=_repair_json)


def _field_patterns(field: str) -> list[re.Pattern]:
    """Six increasingly permissive patterns for one field."""
    f = re.escape(field)
    return [
        # strict double-quoted, multiline, ends before a comma or brace
        re.compile(rf'"{f}"\s*:\s*"([\s\S]*?)(?="\s*[,}}])', re.IGNORECASE),
        # escape-aware double-quoted
        re.compile(rf'"{f}"\s*:\s*"((?:[^"\\]|\\.)*)"', re.IGNORECASE),
        # backtick-delimited
        re.compile(rf'"{f}"\s*:\s*`([\s\S]*?)`', re.IGNORECASE),
        # single-quoted
        re.compile(rf'"{f}"\s*:\s*\'([\s\S]*?)\'', re.IGNORECASE),
        # loose spacing around the key
        re.compile(rf'"\s*{f}\s*"\s*:\s*"([\s\S]*?)"', re.IGNORECASE),
        # last member of an object, no trailing comma
        re.compile(rf'"{f}"\s*:\s*"([\s\S]*?)"\s*(?:}}|$)', re.IGNORECASE),
    ]


def extract_regex_fields(text: str) -> dict | None:
    """Strategy 4: per-field regex fallback with manual unescaping."""
    found = {}
    for field in ALL_FIELDS:
        for i, pattern in enumerate(_field_patterns(field), 1):
            m = pattern.search(text)
            if m and _present(m.group(1)):
                logger.debug(f"[extract] regex_fields: {field} matched pattern {i}")
                found[field] = unescape_value(m.group(1))
                break
    return found or None


STRATEGIES: list[tuple[str, Callable[[str], dict | None]]] = [
    ("backtick_fields", extract_backtick_fields),
    ("backtick_to_json", extract_backtick_to_json),
    ("direct_json", extract_direct_json),
    ("regex_fields", extract_regex_fields),
]


def run_strategy(name: str, text: str) -> dict | None:
    """Run a single named strategy in isolation."""
    for strategy_name, fn in STRATEGIES:
        if strategy_name == name:
            return fn(text)
    raise KeyError(f"Unknown extraction strategy: {name}")


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------

def _build_artifact(found: dict) -> ExtractedCodeArtifact:
    description = found.get("description")
    if not _present(description):
        description = get_settings().placeholder_description
    return ExtractedCodeArtifact(
        html=found["html"],
        css=found["css"],
        js=found["js"],
        description=description,
    )


def extract(raw: str) -> ExtractionResult:
    """
    Run the strategy chain over a raw model response. Never raises.

    Returns an ExtractionResult holding either the artifact and the name of
    the winning strategy, or an ExtractionError. PARTIAL_FIELDS_MISSING is
    reported when some strategy located at least one required field but none
    located all of them.
    """
    text = raw if isinstance(raw, str) else ""
    seen: set[str] = set()

    for name, strategy in STRATEGIES:
        try:
            found = strategy(text) or {}
        except Exception as e:
            # A strategy bug must not break the chain
            logger.warning(f"[extract] {name} raised {type(e).__name__}: {e}")
            continue

        seen.update(f for f in REQUIRED_FIELDS if f in found)
        if all(f in found for f in REQUIRED_FIELDS):
            artifact = _build_artifact(found)
            logger.info(
                f"[extract] {name} succeeded — html={len(artifact.html)} "
                f"css={len(artifact.css)} js={len(artifact.js)} "
                f"description={len(artifact.description)}"
            )
            return ExtractionResult(artifact=artifact, strategy=name)

        logger.debug(f"[extract] {name} failed (found: {sorted(found) or 'nothing'})")

    missing = [f for f in REQUIRED_FIELDS if f not in seen]
    if seen:
        logger.warning(f"[extract] partial response — missing {missing}")
        return ExtractionResult(error=ExtractionError.PARTIAL_FIELDS_MISSING, missing=missing)

    logger.warning(f"[extract] no valid structure found in {len(text)} chars")
    return ExtractionResult(error=ExtractionError.NO_VALID_STRUCTURE_FOUND, missing=missing)


def extract_artifact(raw: str) -> ExtractedCodeArtifact:
    """Like extract() but raises ExtractionFailed instead of returning an error."""
    result = extract(raw)
    if result.artifact is None:
        raise ExtractionFailed(result.error, result.missing)
    return result.artifact


# ---------------------------------------------------------------------------
# Recovery helpers
# ---------------------------------------------------------------------------

def fallback_artifact(prompt: str) -> ExtractedCodeArtifact:
    """Deterministic placeholder used when a response cannot be parsed."""
    safe_prompt = html.escape(prompt or "Untitled")
    return ExtractedCodeArtifact(
        html=(
            '<main class="fallback">\n'
            f"  <h1>{safe_prompt}</h1>\n"
            "  <p>The generated code could not be read. Try generating again.</p>\n"
            '  <button id="retry-hint" type="button">OK</button>\n'
            "</main>"
        ),
        css=(
            "body { font-family: system-ui, sans-serif; margin: 0; background: #f8fafc; }\n"
            ".fallback { max-width: 640px; margin: 4rem auto; padding: 2rem; "
            "background: #fff; border-radius: 12px; text-align: center; }\n"
            ".fallback h1 { color: #1e293b; margin-bottom: 0.5rem; }\n"
            ".fallback p { color: #64748b; }"
        ),
        js=(
            "console.log('Fallback preview ready');\n"
            "document.getElementById('retry-hint').addEventListener('click', function () {\n"
            "  console.log('Fallback preview acknowledged');\n"
            "});"
        ),
        description=f"Generated UI for: {prompt}",
    )


def extract_or_fallback(raw: str, prompt: str = "") -> tuple[ExtractedCodeArtifact, ExtractionResult]:
    """Extract an artifact, substituting the placeholder artifact on any error."""
    result = extract(raw)
    if result.artifact is not None:
        return result.artifact, result
    logger.info(f"[extract] using fallback artifact ({result.error.value})")
    return fallback_artifact(prompt), result


def artifact_to_files(artifact: ExtractedCodeArtifact) -> dict[str, str]:
    """Convert an artifact into the canonical three-file bundle."""
    return {
        "index.html": artifact.html,
        "style.css": artifact.css,
        "script.js": artifact.js,
    }
