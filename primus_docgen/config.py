"""
Application configuration using Pydantic Settings.
All environment-specific values are centralized here.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── App ──────────────────────────────────────────────
    app_name: str = "Primus GFS Document Generator"
    debug: bool = False

    # ── LLM ──────────────────────────────────────────────
    groq_api_key: str = ""
    llm_model: str = "llama-3.3-70b-versatile"
    llm_temperature: float = 0.0  # regulatory documents must be reproducible
    llm_top_p: float = 1.0
    llm_max_tokens_cap: int = 32768  # provider ceiling; budgets are clamped to it

    # ── Framework data ───────────────────────────────────
    framework_data_dir: str = ""  # empty = bundled framework_data/
    compliance_standard: str = "Primus GFS v4.0"

    # ── Generation limits ────────────────────────────────
    max_generation_attempts: int = 3
    min_word_count: int = 1000
    required_section_count: int = 15
    answer_proximity_chars: int = 500

    # ── Validation vocabulary ────────────────────────────
    validator_vocabulary_file: str = ""  # optional JSON override of pattern tables

    # ── Logging ──────────────────────────────────────────
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
