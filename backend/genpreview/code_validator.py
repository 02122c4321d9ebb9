"""
Static preview document validator. Pure Python, no AI.
Catches structural problems in assembled documents and bundles before they
reach the render host. Never changes the document.
"""

import re

from genpreview.config import get_settings

# Extensions the assembler knows how to place
KNOWN_EXTENSIONS = {
    ".html", ".css", ".js", ".jsx", ".tsx",
    # Listed by the fallback document but never executed
    ".json", ".md", ".txt", ".ts", ".svg", ".png", ".jpg", ".scss", ".vue", ".svelte", ".py",
}


def validate_document(document: str) -> dict:
    """
    Validate an assembled preview document.

    Args:
        document: complete HTML string

    Returns:
        {
            "valid": bool,
            "errors": [{"type": str, "message": str, "fix_hint": str}],
            "warnings": [{"type": str, "message": str}],
            "stats": {"bytes": int, "scripts": int, "styles": int, "csp_tags": int}
        }
    """
    errors = []
    warnings = []

    csp_count = document.count("Content-Security-Policy")
    if csp_count != 1:
        errors.append({
            "type": "csp_count",
            "message": f"Expected exactly one Content-Security-Policy, found {csp_count}",
            "fix_hint": "Reassemble the bundle — the assembler owns the CSP tag",
        })

    if not re.search(r"<!doctype html", document, re.IGNORECASE):
        errors.append({
            "type": "missing_doctype",
            "message": "Missing DOCTYPE declaration",
            "fix_hint": "Start the base .html file with <!DOCTYPE html>",
        })

    if not re.search(r"<html[\s>]", document, re.IGNORECASE):
        warnings.append({
            "type": "missing_html",
            "message": "Missing <html> tag — the browser will synthesize one",
        })

    if re.search(r"(?:src|href)\s*=\s*[\"']http://", document, re.IGNORECASE):
        warnings.append({
            "type": "insecure_url",
            "message": "Plain http:// resource found — blocked inside the sandbox",
        })

    warnings.extend(_check_script_origins(document))

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "stats": {
            "bytes": len(document.encode("utf-8")),
            "scripts": len(re.findall(r"<script\b", document, re.IGNORECASE)),
            "styles": len(re.findall(r"<style\b", document, re.IGNORECASE)),
            "csp_tags": csp_count,
        },
    }


def validate_bundle(files: dict) -> dict:
    """Check a {filename: source} bundle for empty or unplaceable files."""
    warnings = []
    for filename, content in files.items():
        if not content or not str(content).strip():
            warnings.append({
                "type": "empty_file",
                "message": f"{filename} is empty",
            })
        dot = filename.rfind(".")
        ext = filename[dot:].lower() if dot > filename.rfind("/") else ""
        if ext not in KNOWN_EXTENSIONS:
            warnings.append({
                "type": "unknown_extension",
                "message": f"{filename} has an unrecognized extension — it will only be listed",
            })

    return {
        "valid": True,
        "errors": [],
        "warnings": warnings,
        "stats": {"total_files": len(files)},
    }


def format_error_report(validation: dict) -> str:
    """Format validation results into a human-readable string."""
    parts = []
    if validation["errors"]:
        parts.append(f"ERRORS ({len(validation['errors'])}):")
        for e in validation["errors"]:
            parts.append(f"  [{e['type']}] {e['message']}")
            if e.get("fix_hint"):
                parts.append(f"    Fix: {e['fix_hint']}")

    if validation["warnings"]:
        parts.append(f"\nWARNINGS ({len(validation['warnings'])}):")
        for w in validation["warnings"]:
            parts.append(f"  [{w['type']}] {w['message']}")

    return "\n".join(parts) if parts else "All checks passed."


def _check_script_origins(document: str) -> list:
    """External scripts must come from one of the two CSP-listed origins."""
    settings = get_settings()
    allowed = (settings.runtime_cdn_origin, settings.transpiler_cdn_origin)
    warnings = []
    for m in re.finditer(r"<script\b[^>]*\bsrc\s*=\s*[\"'](https?://[^\"']+)[\"']", document, re.IGNORECASE):
        url = m.group(1)
        if not url.startswith(allowed):
            warnings.append({
                "type": "blocked_script_origin",
                "message": f"Script from {url} is outside the allowed CDN origins",
            })
    return warnings
