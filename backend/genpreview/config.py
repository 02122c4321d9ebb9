from pydantic_settings import BaseSettings
from functools import lru_cache
import os


class Settings(BaseSettings):
    # Pinned runtime versions loaded by synthesized component documents
    react_version: str = "18.3.1"
    babel_version: str = "7.24.7"
    runtime_cdn_origin: str = "https://unpkg.com"
    transpiler_cdn_origin: str = "https://cdn.jsdelivr.net"

    # Extraction defaults
    placeholder_description: str = "Generated UI"

    # Preview lifecycle
    debounce_seconds: float = 1.0
    materialize_retries: int = 1
    preview_base_url: str = "http://localhost:8000"

    # Sessions idle longer than this are disposed by the background sweep
    session_idle_seconds: float = 1800.0
    session_sweep_seconds: float = 300.0

    # Assembly
    strip_local_references: bool = True
    default_language: str = "javascript"

    log_level: str = "INFO"

    class Config:
        # Look for .env in the repo root (two levels up from backend/genpreview/)
        _env_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()


def build_csp_directive(settings: Settings | None = None) -> str:
    """The fixed Content-Security-Policy applied to every preview document."""
    settings = settings or get_settings()
    origins = f"{settings.runtime_cdn_origin} {settings.transpiler_cdn_origin}"
    return (
        "default-src 'self' 'unsafe-inline' 'unsafe-eval' data: blob: https:; "
        f"script-src 'self' 'unsafe-inline' 'unsafe-eval' {origins}; "
        "style-src 'self' 'unsafe-inline' https:"
    )
