"""Settings resolved once from the environment (and ``.env``) before a search runs."""
from __future__ import annotations

import dataclasses
import os
from pathlib import Path

_DEFAULT_DB_DIR = Path.home() / ".cache" / "imgquery"
_DEFAULT_LANGUAGE = "en"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclasses.dataclass(frozen=True)
class Settings:
    db_path: Path
    language: str = _DEFAULT_LANGUAGE
    embed_images: bool = False
    log_level: str = "WARNING"


def default_db_path(language: str) -> Path:
    """Catalog file for *language*; descriptions are indexed per language."""
    return _DEFAULT_DB_DIR / f"images.{language}.db"


def load_settings(
    db_path: Path | None = None,
    language: str | None = None,
    embed_images: bool | None = None,
) -> Settings:
    """Resolve settings: explicit arguments win over env vars, env vars over defaults.

    ``.env`` loading is the caller's job (the CLI calls ``load_dotenv()``
    before this).
    """
    lang = (language or os.getenv("IMGQUERY_LANGUAGE", "") or _DEFAULT_LANGUAGE).strip().lower()

    if db_path is None:
        raw = os.getenv("IMGQUERY_DB_PATH", "")
        db_path = Path(raw).expanduser() if raw else default_db_path(lang)

    if embed_images is None:
        embed_images = os.getenv("IMGQUERY_EMBED_IMAGES", "").strip().lower() in _TRUTHY

    level = os.getenv("IMGQUERY_LOG_LEVEL", "WARNING").strip().upper() or "WARNING"

    return Settings(
        db_path=Path(db_path),
        language=lang,
        embed_images=embed_images,
        log_level=level,
    )
