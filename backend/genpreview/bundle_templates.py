"""
Static markup and script fragments used by the bundle assembler.

Nothing here inspects user code; assembler.py decides which fragments to use
and fills the __PLACEHOLDER__ tokens.
"""

import html
import json
import re

from genpreview.config import Settings, build_csp_directive, get_settings


# ── Auto-mount ────────────────────────────────────────────────────────────────

# Tried in order before any heuristic scan
CONVENTIONAL_COMPONENT_NAMES = [
    "App",
    "Main",
    "Component",
    "Dashboard",
    "Home",
    "HomePage",
    "Page",
    "Root",
    "Application",
    "MainApp",
    "MyApp",
    "Index",
    "Layout",
    "Landing",
    "LandingPage",
    "Demo",
    "Example",
    "Preview",
    "Widget",
    "TodoApp",
]

# Substrings of a transpiled function body that suggest it renders UI
COMPONENT_MARKERS = [
    "React.createElement",
    "createElement(",
    "jsx(",
    "useState",
    "useEffect",
    "useRef",
    "useMemo",
    "useCallback",
]

AUTO_MOUNT_SCRIPT = """\
;(function (registry) {
__REGISTRATIONS__
  var CONVENTIONAL_NAMES = __CONVENTIONAL_NAMES__;
  var MARKERS = __MARKERS__;
  var container = document.getElementById('root');

  function mount(Component) {
    var element = React.createElement(Component);
    if (typeof ReactDOM.createRoot === 'function') {
      ReactDOM.createRoot(container).render(element);
    } else {
      ReactDOM.render(element, container);
    }
  }

  function placeholder(kind, title, detail) {
    var box = document.createElement('div');
    box.className = 'preview-placeholder preview-placeholder--' + kind;
    var heading = document.createElement('strong');
    heading.textContent = title;
    var body = document.createElement('pre');
    body.textContent = detail;
    box.appendChild(heading);
    box.appendChild(body);
    container.innerHTML = '';
    container.appendChild(box);
  }

  function looksLikeComponent(name, value) {
    if (typeof value !== 'function' || !/^[A-Z]/.test(name)) return false;
    var source = Function.prototype.toString.call(value);
    for (var i = 0; i < MARKERS.length; i++) {
      if (source.indexOf(MARKERS[i]) !== -1) return true;
    }
    return false;
  }

  try {
    for (var i = 0; i < CONVENTIONAL_NAMES.length; i++) {
      var name = CONVENTIONAL_NAMES[i];
      if (registry.has(name) && typeof registry.get(name) === 'function') {
        mount(registry.get(name));
        return;
      }
    }
    var entries = Array.from(registry.entries());
    for (var j = 0; j < entries.length; j++) {
      if (looksLikeComponent(entries[j][0], entries[j][1])) {
        mount(entries[j][1]);
        return;
      }
    }
    placeholder(
      'missing',
      'Component not found',
      'Define a component named one of: ' + CONVENTIONAL_NAMES.join(', ')
    );
  } catch (error) {
    placeholder('error', 'Render error', error && error.message ? error.message : String(error));
  }
})(new Map());
"""


def registration_line(name: str) -> str:
    """One scoped-registry entry; typeof keeps undeclared names from throwing."""
    return f"  registry.set({json.dumps(name)}, typeof {name} !== 'undefined' ? {name} : undefined);"


def render_auto_mount(names: list[str]) -> str:
    return (
        AUTO_MOUNT_SCRIPT
        .replace("__REGISTRATIONS__", "\n".join(registration_line(n) for n in names))
        .replace("__CONVENTIONAL_NAMES__", json.dumps(CONVENTIONAL_COMPONENT_NAMES))
        .replace("__MARKERS__", json.dumps(COMPONENT_MARKERS))
    )


# ── Error reporting ───────────────────────────────────────────────────────────

# Must stay a plain <script>: transpiled blocks run asynchronously
ERROR_HANDLER_SCRIPT = """\
<script>
(function () {
  function show(message) {
    var box = document.getElementById('__preview_error');
    if (!box) {
      box = document.createElement('div');
      box.id = '__preview_error';
      box.style.cssText = 'position:fixed;left:12px;right:12px;bottom:12px;z-index:2147483647;'
        + 'padding:12px 16px;border-radius:8px;background:#1e1e2e;color:#f38ba8;'
        + 'font:13px/1.4 ui-monospace,monospace;white-space:pre-wrap;border:1px solid #45475a;';
      (document.body || document.documentElement).appendChild(box);
    }
    box.textContent = message;
  }
  window.addEventListener('error', function (event) {
    show('Error: ' + (event.message || 'Unknown error'));
  });
  window.addEventListener('unhandledrejection', function (event) {
    var reason = event.reason;
    show('Unhandled promise rejection: ' + (reason && reason.message ? reason.message : String(reason)));
  });
})();
</script>"""

# Inline scripts carry no .tsx filename, so the stock typescript preset never
# applies to them. Must run after the transpiler loads and before it compiles.
TSX_PRESET_NAME = "tsx"
TSX_PRESET_SCRIPT = """\
<script>
if (window.Babel && !Babel.availablePresets.tsx) {
  Babel.registerPreset('tsx', {
    presets: [[Babel.availablePresets.typescript, { allExtensions: true, isTSX: true }]]
  });
}
</script>"""

GUARDED_SCRIPT = """\
<script>
try {
__CODE__
} catch (error) {
  var target = document.getElementById('root') || document.body;
  var message = error && error.message ? error.message : String(error);
  target.innerHTML = '';
  var box = document.createElement('div');
  box.className = 'preview-placeholder preview-placeholder--error';
  var heading = document.createElement('strong');
  heading.textContent = 'Script error';
  var body = document.createElement('pre');
  body.textContent = message;
  box.appendChild(heading);
  box.appendChild(body);
  target.appendChild(box);
}
</script>"""


# ── Stylesheets ───────────────────────────────────────────────────────────────

BASE_STYLESHEET = """\
*, *::before, *::after {
  box-sizing: border-box;
}

html, body {
  margin: 0;
  padding: 0;
  min-height: 100%;
}

body {
  font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
  -webkit-font-smoothing: antialiased;
  -moz-osx-font-smoothing: grayscale;
}

img, video {
  max-width: 100%;
  height: auto;
}

::-webkit-scrollbar {
  width: 8px;
  height: 8px;
}
::-webkit-scrollbar-thumb {
  background: #c1c7d0;
  border-radius: 4px;
}
::-webkit-scrollbar-track {
  background: transparent;
}

:focus-visible {
  outline: 2px solid #3b82f6;
  outline-offset: 2px;
}
"""

PLACEHOLDER_STYLESHEET = """\
.preview-placeholder {
  margin: 2rem auto;
  max-width: 640px;
  padding: 1.5rem;
  border-radius: 8px;
  font-family: ui-monospace, monospace;
}
.preview-placeholder strong {
  display: block;
  margin-bottom: 0.5rem;
}
.preview-placeholder pre {
  white-space: pre-wrap;
  font-size: 0.8rem;
  margin: 0;
}
.preview-placeholder--missing {
  background: #fefce8;
  color: #854d0e;
  border: 1px solid #fde047;
}
.preview-placeholder--error {
  background: #1e1e2e;
  color: #f38ba8;
  border: 1px solid #45475a;
}
"""

FALLBACK_STYLESHEET = """\
body {
  font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
  background: #f8fafc;
  color: #1e293b;
  margin: 0;
  padding: 2rem;
}
.bundle {
  max-width: 720px;
  margin: 0 auto;
  background: #fff;
  border-radius: 12px;
  padding: 2rem;
  box-shadow: 0 1px 3px rgba(0, 0, 0, 0.08);
}
.bundle h1 { margin-top: 0; }
.bundle .description { color: #64748b; }
.files { list-style: none; padding: 0; }
.files li {
  display: flex;
  gap: 0.75rem;
  padding: 0.5rem 0;
  border-bottom: 1px solid #e2e8f0;
}
.files .size { margin-left: auto; color: #94a3b8; font-size: 0.85rem; }
.stats { display: flex; gap: 1.5rem; margin-top: 1.5rem; font-size: 0.9rem; }
.stats span { color: #3b82f6; font-weight: 600; }
.empty { color: #94a3b8; font-style: italic; }
"""


# ── Fallback listing ──────────────────────────────────────────────────────────

FILE_ICONS = {
    ".css": "🎨",
    ".scss": "🎨",
    ".json": "📋",
    ".md": "📝",
    ".txt": "📝",
    ".ts": "📘",
    ".py": "🐍",
    ".svg": "🖼️",
    ".png": "🖼️",
    ".jpg": "🖼️",
    ".vue": "💚",
    ".svelte": "🧡",
}
DEFAULT_FILE_ICON = "📄"


# ── Document pieces ───────────────────────────────────────────────────────────

_CSP_PHRASE = re.compile(r"content-security-policy", re.IGNORECASE)


def escape_text(value: str) -> str:
    """HTML-escape text for a synthesized document. Only the meta tag may spell out the CSP name."""
    return _CSP_PHRASE.sub(lambda m: m.group(0).replace("-", "&#45;"), html.escape(value))


def comment_label(name: str) -> str:
    """A file name made safe for a /* */ or // header comment."""
    label = re.sub(r"[\r\n\u2028\u2029]+", " ", name).replace("*/", "* /")
    return _CSP_PHRASE.sub(lambda m: m.group(0).replace("-", " "), label)


def csp_meta_tag(settings: Settings | None = None) -> str:
    directive = html.escape(build_csp_directive(settings), quote=False)
    return f'<meta http-equiv="Content-Security-Policy" content="{directive}">'


def runtime_urls(settings: Settings | None = None) -> list[str]:
    """UI runtime, its DOM renderer and the in-browser transpiler, pinned."""
    s = settings or get_settings()
    return [
        f"{s.runtime_cdn_origin}/react@{s.react_version}/umd/react.development.js",
        f"{s.runtime_cdn_origin}/react-dom@{s.react_version}/umd/react-dom.development.js",
        f"{s.transpiler_cdn_origin}/npm/@babel/standalone@{s.babel_version}/babel.min.js",
    ]


def runtime_script_tags(settings: Settings | None = None, skip: str = "") -> str:
    """Script tags for the pinned runtime, leaving out any URL already present in `skip`."""
    return "\n".join(
        f'<script crossorigin src="{url}"></script>'
        for url in runtime_urls(settings)
        if url not in skip
    )


def head_preamble(title: str) -> str:
    """charset, viewport, CSP and title — the common start of every synthesized head."""
    return (
        '<meta charset="UTF-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        f"{csp_meta_tag()}\n"
        f"<title>{escape_text(title)}</title>"
    )
