import pytest

from genpreview import extractor
from genpreview.extractor import (
    ExtractionError,
    ExtractionFailed,
    artifact_to_files,
    extract,
    extract_artifact,
    extract_or_fallback,
    fallback_artifact,
    run_strategy,
)

PAYLOAD = '{"html":"<h1>Hi</h1>","css":"h1{color:blue}","js":"console.log(1)","description":"demo"}'


def _fields(artifact):
    return (artifact.html, artifact.css, artifact.js, artifact.description)


def test_fenced_json_example():
    raw = f"Here is code: ```json\n{PAYLOAD}\n```"
    result = extract(raw)
    assert result.ok
    assert result.error is None
    assert _fields(result.artifact) == ("<h1>Hi</h1>", "h1{color:blue}", "console.log(1)", "demo")


@pytest.mark.parametrize("wrap", [
    "{}",
    "```json\n{}\n```",
    "```\n{}\n```",
    "Sure! Here you go:\n\n```json\n{}\n```\n\nLet me know if you need changes.",
])
def test_fence_wrapping_does_not_change_result(wrap):
    result = extract(wrap.replace("{}", PAYLOAD))
    assert _fields(result.artifact) == ("<h1>Hi</h1>", "h1{color:blue}", "console.log(1)", "demo")


def test_backtick_values_equal_quoted_values():
    quoted = (
        '{"html": "<div>\\n  <p>Hi</p>\\n</div>", "css": "p { color: red; }", '
        '"js": "const x = \\"a\\";", "description": "card"}'
    )
    backticked = (
        '{"html": `<div>\n  <p>Hi</p>\n</div>`, "css": `p { color: red; }`, '
        '"js": `const x = "a";`, "description": `card`}'
    )
    a = extract(quoted)
    b = extract(backticked)
    assert b.strategy == "backtick_fields"
    assert _fields(a.artifact) == _fields(b.artifact)


def test_backtick_fields_ignores_field_order():
    raw = '"js": `run()`, "description": `x`, "css": `a{}`, "html": `<a></a>`'
    found = run_strategy("backtick_fields", raw)
    assert found == {"html": "<a></a>", "css": "a{}", "js": "run()", "description": "x"}


def test_backtick_fields_finds_nothing_in_plain_json():
    assert run_strategy("backtick_fields", PAYLOAD) is None


def test_backtick_to_json_handles_mixed_values():
    raw = '```json\n{"html": `<p class="x">a</p>`, "css": "p{}", "js": `alert(\'hi\')`}\n```'
    found = run_strategy("backtick_to_json", raw)
    assert found["html"] == '<p class="x">a</p>'
    assert found["css"] == "p{}"
    assert found["js"] == "alert('hi')"


def test_raw_control_characters_recovered_by_direct_json():
    raw = '{"html": "<div>\n\tHi\n</div>", "css": "div{}", "js": "go()"}'
    assert run_strategy("backtick_to_json", raw) is None
    result = extract(raw)
    assert result.strategy == "direct_json"
    assert result.artifact.html == "<div>\n\tHi\n</div>"


def test_regex_fields_recovers_unbraced_fields():
    raw = r'"html": "<p>hi</p>", "css": "p { color: red }", "js": "a();\nb();"'
    result = extract(raw)
    assert result.strategy == "regex_fields"
    assert result.artifact.html == "<p>hi</p>"
    assert result.artifact.css == "p { color: red }"
    assert result.artifact.js == "a();\nb();"


def test_missing_description_uses_placeholder():
    result = extract('{"html": "<p></p>", "css": "p{}", "js": "x()"}')
    assert result.artifact.description == "Generated UI"


def test_partial_fields_missing():
    result = extract('{"html": "<p>only html</p>"}')
    assert not result.ok
    assert result.error == ExtractionError.PARTIAL_FIELDS_MISSING
    assert result.missing == ["css", "js"]


@pytest.mark.parametrize("raw", ["I'm sorry, I can't help with that.", "", None, 42])
def test_no_valid_structure(raw):
    result = extract(raw)
    assert result.artifact is None
    assert result.error == ExtractionError.NO_VALID_STRUCTURE_FOUND
    assert result.missing == ["html", "css", "js"]


def test_failing_strategy_does_not_break_chain(monkeypatch):
    def boom(text):
        raise RuntimeError("strategy bug")

    monkeypatch.setattr(extractor, "STRATEGIES", [("boom", boom)] + extractor.STRATEGIES)
    result = extract(PAYLOAD)
    assert result.ok
    assert result.strategy == "backtick_to_json"


def test_unknown_strategy_name():
    with pytest.raises(KeyError):
        run_strategy("nope", PAYLOAD)


def test_extract_artifact_raises():
    with pytest.raises(ExtractionFailed) as exc:
        extract_artifact('{"css": "a{}"}')
    assert exc.value.error == ExtractionError.PARTIAL_FIELDS_MISSING
    assert exc.value.missing == ["html", "js"]


def test_extract_or_fallback_substitutes_placeholder():
    artifact, result = extract_or_fallback("no code here", "todo <app>")
    assert not result.ok
    assert artifact.description == "Generated UI for: todo <app>"
    assert "todo &lt;app&gt;" in artifact.html
    assert artifact == fallback_artifact("todo <app>")


def test_artifact_to_files():
    artifact = extract(PAYLOAD).artifact
    assert artifact_to_files(artifact) == {
        "index.html": "<h1>Hi</h1>",
        "style.css": "h1{color:blue}",
        "script.js": "console.log(1)",
    }
