"""
Text helpers for turning raw model replies into parseable JSON.
Pure Python, no AI — regex and character-level rewriting only.

Functions:
  normalize_backticks()          — `value` -> "escaped value" for every backtick-delimited value
  convert_stray_backticks()      — same rewrite for any backtick pair left in a JSON block
  escape_control_characters()    — raw 0x00-0x1F / 0x7F bytes -> \\uXXXX inside strings
  locate_json_candidates()       — ```json fence, bare ``` fence, first-to-last {...} span
  unescape_value()               — manual decoding of regex-captured string values
"""

import re

# Ordered: fenced json block, bare fenced block, widest {...} span
JSON_BLOCK_PATTERNS = [
    re.compile(r"```json\s*(\{[\s\S]*?\})\s*```", re.IGNORECASE),
    re.compile(r"```\s*(\{[\s\S]*?\})\s*```"),
    re.compile(r"(\{[\s\S]*\})"),
]

_JSON_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\f": "\\f",
    "\b": "\\b",
}

_SIMPLE_UNESCAPES = {
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "f": "\f",
    "b": "\b",
    '"': '"',
    "'": "'",
    "/": "/",
    "\\": "\\",
}

_ESCAPE_SEQUENCE = re.compile(r"\\(u[0-9a-fA-F]{4}|x[0-9a-fA-F]{2}|.)", re.DOTALL)


def json_escape(content: str) -> str:
    """Escape text so it can sit between double quotes in a JSON document."""
    return "".join(_JSON_ESCAPES.get(ch, ch) for ch in content)


def _rewrite_backticks(text: str, values_only: bool) -> str:
    """
    Replace backtick-delimited runs that sit outside double-quoted strings.

    Runs of two or more backticks (markdown fences) are copied as-is. With
    values_only, a run is rewritten only when the last non-space character
    before it is a colon, i.e. it occupies a JSON value position.
    """
    out = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
            continue

        if ch != "`":
            out.append(ch)
            i += 1
            continue

        run_end = i
        while run_end < n and text[run_end] == "`":
            run_end += 1
        if run_end - i > 1:
            out.append(text[i:run_end])
            i = run_end
            continue

        close = text.find("`", i + 1)
        j = i - 1
        while j >= 0 and text[j].isspace():
            j -= 1
        in_value_position = j >= 0 and text[j] == ":"
        if close == -1 or (values_only and not in_value_position):
            out.append(ch)
            i += 1
            continue

        out.append(f'"{json_escape(text[i + 1:close])}"')
        i = close + 1
    return "".join(out)


def normalize_backticks(text: str) -> str:
    """Rewrite every `"key": `value`` into `"key": "value"` with JSON escaping."""
    return _rewrite_backticks(text, values_only=True)


def convert_stray_backticks(text: str) -> str:
    """Turn any remaining backtick pair into a double-quoted JSON string."""
    return _rewrite_backticks(text, values_only=False)


def escape_control_characters(text: str) -> str:
    """
    Escape raw control bytes (0x00-0x1F, 0x7F) as \\uXXXX.

    Inside string literals every control byte is escaped. Outside them the
    JSON whitespace characters (newline, CR, tab) are kept so pretty-printed
    objects still parse; any other control byte there is escaped too and
    will make the parse fail as it should.
    """
    out = []
    in_string = False
    escaped = False
    for ch in text:
        code = ord(ch)
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            if code < 0x20 or code == 0x7F:
                out.append(f"\\u{code:04x}")
                continue
        else:
            if ch == '"':
                in_string = True
            elif (code < 0x20 or code == 0x7F) and ch not in "\n\r\t":
                out.append(f"\\u{code:04x}")
                continue
        out.append(ch)
    return "".join(out)


def locate_json_candidates(text: str) -> list[str]:
    """
    Return candidate JSON object strings in priority order.

    Each pattern contributes at most one candidate; duplicates are dropped so
    an unfenced object is not parsed twice.
    """
    candidates = []
    for pattern in JSON_BLOCK_PATTERNS:
        m = pattern.search(text)
        if m and m.group(1) not in candidates:
            candidates.append(m.group(1))
    return candidates


def _decode_escape(m: re.Match) -> str:
    seq = m.group(1)
    if len(seq) == 5 and seq[0] == "u":
        return chr(int(seq[1:], 16))
    if len(seq) == 3 and seq[0] == "x":
        return chr(int(seq[1:], 16))
    # Unknown escapes keep their backslash
    return _SIMPLE_UNESCAPES.get(seq, "\\" + seq)


def unescape_value(value: str) -> str:
    """Decode \\n \\r \\t \\f \\b \\" \\' \\/ \\\\ plus \\uXXXX and \\xXX escapes in one pass."""
    return _ESCAPE_SEQUENCE.sub(_decode_escape, value)
