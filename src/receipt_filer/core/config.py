from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"

    google_project_id: str = ""
    google_location: str = "asia-northeast1"
    # Comma-separated list of extra regions tried after google_location.
    google_location_fallback: str | None = None
    google_client_email: str | None = None
    google_private_key: str | None = None

    vertex_model: str = "gemini-2.5-flash"
    vertex_timeout_seconds: float = 30.0

    extraction_max_attempts: int = 2
    extraction_backoff_seconds: float = 0.8

    storage_backend: Literal["drive", "local"] = "drive"
    local_storage_path: Path = Path(".local_drive")
    drive_root_folder_id: str = ""
    drive_timeout_seconds: float = 30.0

    legacy_cutoff_year: int = 2025
    legacy_folder_name: str = "expenses-through-2025"
    # JSON object: {"category": ["dir", ..., "7-generic"]}. Empty uses the built-in table.
    category_fallbacks: dict[str, list[str]] | None = None

    batch_deadline_seconds: float = 55.0
    filing_max_workers: int = 1
    pdf_render_scale: float = 2.0


settings = Settings()
