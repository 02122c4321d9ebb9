"""
Share links for the standalone sandbox page: a project serialized as JSON and
base64-encoded into the `data` query parameter.
"""

import base64
import binascii
import json

from pydantic import BaseModel, ValidationError


class SharedProject(BaseModel):
    files: dict[str, str] = {}
    title: str = ""
    description: str = ""
    template: str = ""
    dependencies: dict[str, str] = {}


def encode_share_payload(project: SharedProject | dict) -> str:
    if isinstance(project, dict):
        project = SharedProject(**project)
    raw = json.dumps(project.model_dump(), ensure_ascii=False, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_share_payload(data: str) -> SharedProject:
    """
    Decode a `data` parameter. Accepts URL-safe or standard base64, with or
    without padding. Raises ValueError for anything that is not a project.
    """
    if not isinstance(data, str) or not data.strip():
        raise ValueError("Empty share payload")

    # '+' arrives as a space when the link was not URL-encoded
    text = data.strip().replace(" ", "+").replace("-", "+").replace("_", "/")
    text += "=" * (-len(text) % 4)
    try:
        raw = base64.b64decode(text, validate=True).decode("utf-8")
        parsed = json.loads(raw)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Malformed share payload: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError("Share payload must be a JSON object")
    try:
        return SharedProject(**parsed)
    except ValidationError as e:
        raise ValueError(f"Invalid share payload: {e.error_count()} field error(s)") from e
