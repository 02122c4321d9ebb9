"""
Code bundle assembler — turns a {filename: source} map into one self-contained
HTML document for the sandboxed preview frame.
Pure string building, no AI, no I/O.

Branch is chosen by the extensions present (first match wins):
  (a) .html        — first .html file is the base; CSS/JS injected into it
  (b) .jsx / .tsx  — synthesized React document with auto-mount
  (c) .js          — synthesized document running JS inside try/catch
  (d) anything else, or nothing — descriptive listing of the bundle

Every document carries exactly one CSP meta tag, applies CSS before any JS
runs, and concatenates files in the map's insertion order.
"""

import logging
import re
from collections.abc import Mapping

from genpreview import bundle_templates as tpl
from genpreview.code_validator import format_error_report, validate_document
from genpreview.config import get_settings

logger = logging.getLogger(__name__)

COMPONENT_EXTENSIONS = (".jsx", ".tsx")

_CSP_META = re.compile(
    r"<meta\b[^>]*http-equiv\s*=\s*[\"']?content-security-policy(?=[\"'\s/>])[^>]*>",
    re.IGNORECASE,
)
_HEAD_OPEN = re.compile(r"<head(?:\s[^>]*)?>", re.IGNORECASE)
_HTML_OPEN = re.compile(r"<html(?:\s[^>]*)?>", re.IGNORECASE)
_DOCTYPE = re.compile(r"<!doctype[^>]*>", re.IGNORECASE)
_BODY_CLOSE = re.compile(r"</body\s*>", re.IGNORECASE)


# ---------------------------------------------------------------------------
# File map helpers
# ---------------------------------------------------------------------------

def _extension(filename: str) -> str:
    name = filename.lower()
    dot = name.rfind(".")
    return name[dot:] if dot > name.rfind("/") else ""


def _coerce_files(files) -> dict[str, str]:
    """Accept any mapping; stringify keys and values, keep insertion order."""
    if not isinstance(files, Mapping):
        return {}
    return {str(k): "" if v is None else str(v) for k, v in files.items()}


def _select(files: dict, extensions: tuple) -> list[tuple[str, str]]:
    return [(name, src) for name, src in files.items() if _extension(name) in extensions]


def detect_framework(files) -> str:
    """Framework tag for a bundle: react, vanilla or static."""
    exts = {_extension(name) for name in _coerce_files(files)}
    if exts & set(COMPONENT_EXTENSIONS):
        return "react"
    if exts & {".html", ".js"}:
        return "vanilla"
    return "static"


def _escape_script(source: str) -> str:
    return re.sub(r"</(script)", r"<\\/\1", source, flags=re.IGNORECASE)


def _escape_style(source: str) -> str:
    return re.sub(r"</(style)", r"<\\/\1", source, flags=re.IGNORECASE)


def _concat_css(files: dict) -> str:
    return "\n\n".join(
        f"/* --- {tpl.comment_label(name)} --- */\n{src}" for name, src in _select(files, (".css",))
    )


def _concat_scripts(files: dict) -> str:
    """Plain .js files first, then .jsx/.tsx, each in insertion order."""
    parts = _select(files, (".js",)) + _select(files, COMPONENT_EXTENSIONS)
    return "\n\n".join(
        f"// --- {tpl.comment_label(name)} ---\n{strip_module_syntax(src)}" for name, src in parts
    )


# ---------------------------------------------------------------------------
# Module syntax: classic scripts cannot import or export
# ---------------------------------------------------------------------------

_IMPORT_FROM = re.compile(
    r"^[ \t]*import\s+([\s\S]*?)\s+from\s+['\"]([^'\"]+)['\"][ \t]*;?[ \t]*$",
    re.MULTILINE,
)
_IMPORT_SIDE_EFFECT = re.compile(r"^[ \t]*import\s+['\"][^'\"]+['\"][ \t]*;?[ \t]*$", re.MULTILINE)
_UMD_GLOBALS = {
    "react": "React",
    "react-dom": "ReactDOM",
    "react-dom/client": "ReactDOM",
}


def _rewrite_import(m: re.Match) -> str:
    clause, module = m.group(1).strip(), m.group(2)
    global_name = _UMD_GLOBALS.get(module)
    if not global_name:
        return ""
    named = re.search(r"\{([^}]*)\}", clause)
    if not named or clause.startswith("type "):
        return ""
    members = []
    for item in named.group(1).split(","):
        item = item.strip()
        if not item or item.startswith("type "):
            continue
        original, _, alias = item.partition(" as ")
        members.append(f"{original.strip()}: {alias.strip()}" if alias else original.strip())
    if not members:
        return ""
    return f"var {{ {', '.join(members)} }} = {global_name};"


def strip_module_syntax(source: str) -> str:
    """
    Make ES module source runnable as a classic script.

    Named imports from react / react-dom become destructuring of the UMD
    globals; every other import is dropped. Export keywords are removed and
    anonymous default exports are bound to DefaultExport.
    """
    source = _IMPORT_SIDE_EFFECT.sub("", source)
    source = _IMPORT_FROM.sub(_rewrite_import, source)
    source = re.sub(r"^([ \t]*)export\s+default\s+[A-Za-z_$][\w$]*\s*;?[ \t]*$", "", source, flags=re.MULTILINE)
    source = re.sub(
        r"^([ \t]*)export\s+default\s+((?:async\s+)?function\s*\*?\s*)\(",
        r"\1\2DefaultExport(",
        source,
        flags=re.MULTILINE,
    )
    source = re.sub(
        r"^([ \t]*)export\s+default\s+(?=(?:async\s+)?function\b|class\b)",
        r"\1",
        source,
        flags=re.MULTILINE,
    )
    source = re.sub(r"^([ \t]*)export\s+default\s+", r"\1const DefaultExport = ", source, flags=re.MULTILINE)
    source = re.sub(r"^[ \t]*export\s*\{[^}]*\}\s*(?:from\s+['\"][^'\"]+['\"])?\s*;?[ \t]*$", "", source, flags=re.MULTILINE)
    source = re.sub(
        r"^([ \t]*)export\s+(?=(?:const|let|var|function|class|async|interface|type|enum)\b)",
        r"\1",
        source,
        flags=re.MULTILINE,
    )
    return source


# ---------------------------------------------------------------------------
# Auto-mount registry
# ---------------------------------------------------------------------------

_DECLARATION = re.compile(
    r"^(?:(?:async\s+)?function\s*\*?\s*(?P<fn>[A-Za-z_$][\w$]*)"
    r"|class\s+(?P<cls>[A-Za-z_$][\w$]*)"
    r"|(?:const|let|var)\s+(?P<var>[A-Za-z_$][\w$]*)\s*(?::[^=\n]+)?=\s*(?P<rhs>[^\n]*))",
    re.MULTILINE,
)
_CALLABLE_RHS = re.compile(
    r"^\s*(?:async\s+)?(?:function\b|\([^)]*\)\s*(?::[^=]+)?=>|[A-Za-z_$][\w$]*\s*=>"
    r"|(?:React\.)?(?:memo|forwardRef)\s*\()"
)
_JSX_TAG = re.compile(r"<[A-Za-z][\w.]*[\s/>]|<>")


def declared_components(source: str) -> list[dict]:
    """
    Top-level declarations of component source, in order.

    Only declarations starting at column 0 count as top level. Each entry has
    the name, whether it is statically callable, and its body text.
    """
    matches = list(_DECLARATION.finditer(source))
    found = []
    seen = set()
    for i, m in enumerate(matches):
        name = m.group("fn") or m.group("cls") or m.group("var")
        if name in seen:
            continue
        seen.add(name)
        end = matches[i + 1].start() if i + 1 < len(matches) else len(source)
        callable_ = bool(m.group("fn") or m.group("cls") or _CALLABLE_RHS.match(m.group("rhs") or ""))
        found.append({"name": name, "callable": callable_, "body": source[m.start():end]})
    return found


def resolve_mount_target(source: str) -> dict:
    """
    Static mirror of the in-document auto-mount tiers.

    Returns {"tier": "conventional" | "heuristic" | "placeholder", "name": str | None,
    "registered": [names]}.
    """
    declarations = declared_components(strip_module_syntax(source))
    registered = [d["name"] for d in declarations]
    by_name = {d["name"]: d for d in declarations}

    for name in tpl.CONVENTIONAL_COMPONENT_NAMES:
        if name in by_name and by_name[name]["callable"]:
            return {"tier": "conventional", "name": name, "registered": registered}

    for d in declarations:
        if not (d["callable"] and d["name"][:1].isupper()):
            continue
        body = d["body"]
        if _JSX_TAG.search(body) or any(marker in body for marker in tpl.COMPONENT_MARKERS):
            return {"tier": "heuristic", "name": d["name"], "registered": registered}

    return {"tier": "placeholder", "name": None, "registered": registered}


# ---------------------------------------------------------------------------
# Branch (a): inject into an existing HTML document
# ---------------------------------------------------------------------------

def _strip_local_references(document: str, files: dict) -> str:
    """Drop <link>/<script src> tags pointing at files that get inlined."""
    # Only kinds that actually get inlined; a .mjs or .scss reference stays
    styles = {name.rsplit("/", 1)[-1] for name, _ in _select(files, (".css",))}
    scripts = {name.rsplit("/", 1)[-1] for name, _ in _select(files, (".js",) + COMPONENT_EXTENSIONS)}

    def _is_local(url: str, names: set) -> bool:
        url = url.split("?", 1)[0].split("#", 1)[0]
        return url.lstrip("./").rsplit("/", 1)[-1] in names and "://" not in url

    def _drop_link(m: re.Match) -> str:
        href = re.search(r"href\s*=\s*[\"']([^\"']+)[\"']", m.group(0), re.IGNORECASE)
        return "" if href and _is_local(href.group(1), styles) else m.group(0)

    def _drop_script(m: re.Match) -> str:
        return "" if _is_local(m.group(1), scripts) else m.group(0)

    document = re.sub(r"<link\b[^>]*rel\s*=\s*[\"']?stylesheet[\"']?[^>]*>", _drop_link, document, flags=re.IGNORECASE)
    document = re.sub(
        r"<script\b[^>]*src\s*=\s*[\"']([^\"']+)[\"'][^>]*>\s*</script\s*>",
        _drop_script,
        document,
        flags=re.IGNORECASE,
    )
    return document


def _ensure_head(document: str) -> str:
    if _HEAD_OPEN.search(document):
        return document
    for pattern in (_HTML_OPEN, _DOCTYPE):
        m = pattern.search(document)
        if m:
            return document[:m.end()] + "\n<head></head>" + document[m.end():]
    return "<head></head>\n" + document


def _single_csp(document: str) -> tuple[str, bool]:
    """Keep only the first existing CSP meta tag. Returns (document, had_one)."""
    tags = list(_CSP_META.finditer(document))
    if len(tags) <= 1:
        return document, bool(tags)
    first = tags[0]
    tail = _CSP_META.sub("", document[first.end():])
    return document[:first.end()] + tail, True


def _assemble_html(files: dict) -> str:
    settings = get_settings()
    _, document = _select(files, (".html",))[0]

    if settings.strip_local_references:
        document = _strip_local_references(document, files)

    document, has_csp = _single_csp(document)
    document = _ensure_head(document)

    head_inject = [] if has_csp else [tpl.csp_meta_tag()]
    css = _concat_css(files)
    if css:
        head_inject.append(f"<style>\n{_escape_style(css)}\n</style>")
    if head_inject:
        m = _HEAD_OPEN.search(document)
        document = document[:m.end()] + "\n" + "\n".join(head_inject) + document[m.end():]

    body_inject = [tpl.ERROR_HANDLER_SCRIPT]
    code = _concat_scripts(files)
    has_components = bool(_select(files, COMPONENT_EXTENSIONS))
    if has_components:
        runtime = tpl.runtime_script_tags(skip=document)
        if runtime:
            body_inject.append(runtime)
        body_inject.append(_babel_block(files, code))
    elif code:
        body_inject.append(f"<script>\n{_escape_script(code)}\n</script>")

    injection = "\n".join(body_inject) + "\n"
    closes = list(_BODY_CLOSE.finditer(document))
    if closes:
        at = closes[-1].start()
        return document[:at] + injection + document[at:]
    return document + "\n" + injection


def _babel_block(files: dict, source: str) -> str:
    """The text/babel script, preceded by the tsx preset registration when a .tsx file is present."""
    block = f'<script type="text/babel" data-presets="{_babel_presets(files)}">\n{_escape_script(source)}\n</script>'
    if _select(files, (".tsx",)):
        return f"{tpl.TSX_PRESET_SCRIPT}\n{block}"
    return block


def _babel_presets(files: dict) -> str:
    return f"{tpl.TSX_PRESET_NAME},react" if _select(files, (".tsx",)) else "react"


# ---------------------------------------------------------------------------
# Branches (b), (c), (d): synthesized documents
# ---------------------------------------------------------------------------

def _document(title: str, head_extra: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        f"{tpl.head_preamble(title)}\n"
        f"{head_extra}\n"
        "</head>\n"
        "<body>\n"
        f"{body}\n"
        "</body>\n"
        "</html>\n"
    )


def _assemble_components(files: dict, title: str) -> str:
    code = _concat_scripts(files)
    target = resolve_mount_target(code)
    logger.info(
        f"[assemble] auto-mount: {len(target['registered'])} registered, "
        f"expected tier={target['tier']} name={target['name']}"
    )
    css = _concat_css(files)
    styles = "\n".join(part for part in (tpl.BASE_STYLESHEET, tpl.PLACEHOLDER_STYLESHEET, css) if part)
    head_extra = f"<style>\n{_escape_style(styles)}\n</style>\n{tpl.runtime_script_tags()}"
    script = f"{code}\n\n{tpl.render_auto_mount(target['registered'])}"
    body = (
        '<div id="root"></div>\n'
        f"{tpl.ERROR_HANDLER_SCRIPT}\n"
        f"{_babel_block(files, script)}"
    )
    return _document(title, head_extra, body)


def _assemble_script(files: dict, title: str) -> str:
    css = _concat_css(files)
    styles = "\n".join(part for part in (tpl.PLACEHOLDER_STYLESHEET, css) if part)
    head_extra = f"<style>\n{_escape_style(styles)}\n</style>"
    body = (
        '<div id="root"></div>\n'
        f"{tpl.ERROR_HANDLER_SCRIPT}\n"
        f"{tpl.GUARDED_SCRIPT.replace('__CODE__', _escape_script(_concat_scripts(files)))}"
    )
    return _document(title, head_extra, body)


def _assemble_listing(files: dict, title: str, description: str, language_tag: str) -> str:
    items = []
    for name, src in files.items():
        icon = tpl.FILE_ICONS.get(_extension(name), tpl.DEFAULT_FILE_ICON)
        items.append(
            f'  <li><span class="icon">{icon}</span>'
            f'<span class="name">{tpl.escape_text(name)}</span>'
            f'<span class="size">{len(src)} chars</span></li>'
        )
    listing = "\n".join(items) if items else '  <li class="empty">This bundle has no files.</li>'
    body = (
        '<div class="bundle">\n'
        f"<h1>{tpl.escape_text(title)}</h1>\n"
        f'<p class="description">{tpl.escape_text(description or "No previewable source files in this bundle.")}</p>\n'
        f'<ul class="files">\n{listing}\n</ul>\n'
        '<div class="stats">\n'
        f"  <div>Files: <span>{len(files)}</span></div>\n"
        f"  <div>Framework: <span>{tpl.escape_text(detect_framework(files))}</span></div>\n"
        f"  <div>Language: <span>{tpl.escape_text(language_tag)}</span></div>\n"
        "</div>\n"
        "</div>"
    )
    return _document(title, f"<style>\n{tpl.FALLBACK_STYLESHEET}</style>", body)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def select_branch(files) -> str:
    exts = {_extension(name) for name in _coerce_files(files)}
    if ".html" in exts:
        return "html"
    if exts & set(COMPONENT_EXTENSIONS):
        return "components"
    if ".js" in exts:
        return "script"
    return "listing"


def assemble(files, title: str = "", description: str = "", language_tag: str | None = None) -> str:
    """
    Assemble a bundle into one preview document. Total for any input.

    Args:
        files: {filename: source}, insertion order decides concatenation order
        title: document title (synthesized documents only)
        description: shown by the listing fallback
        language_tag: shown by the listing fallback; defaults to settings

    Returns: complete HTML5 document string
    """
    files = _coerce_files(files)
    title = title or "Preview"
    language_tag = language_tag or get_settings().default_language
    branch = select_branch(files)

    if branch == "html":
        document = _assemble_html(files)
    elif branch == "components":
        document = _assemble_components(files, title)
    elif branch == "script":
        document = _assemble_script(files, title)
    else:
        document = _assemble_listing(files, title, description, language_tag)

    validation = validate_document(document)
    logger.info(
        f"[assemble] branch={branch} files={len(files)} framework={detect_framework(files)} "
        f"size={len(document)}"
    )
    if validation["errors"] or validation["warnings"]:
        logger.warning(f"[assemble] validation:\n{format_error_report(validation)}")
    return document
