from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"
    log_directory: Path | None = None
    log_retention_days: int = Field(default=365, ge=1)

    max_concurrent_tasks: int = Field(default=3, ge=1)
    task_history_limit: int = Field(default=1000, ge=1)

    cache_directory: Path = Path("./cache")
    max_cache_size_bytes: int = Field(default=1024 * 1024 * 1024, gt=0)
    max_cache_age_ms: int = Field(default=24 * 60 * 60 * 1000, gt=0)

    output_directory: Path = Path("./output")
    tool_timeout_ms: int = Field(default=30_000, gt=0)
    process_kill_grace_ms: int = Field(default=5_000, ge=0)

    libreoffice_binary: str = "soffice"
    imagemagick_binary: str = "convert"
    ghostscript_binary: str = "gs"
    tesseract_binary: str = "tesseract"
    ocr_language: str = "eng"

    pdf_engine: str = "pdfplumber"
    verify_pdf_output: bool = True
