"""Configuration management via environment variables.

Reads from .env file (via pydantic-settings) with sensible defaults.
All values can be overridden via environment variables.

Required:
    EDGAR_IDENTITY  — Your name + email for SEC EDGAR API User-Agent header

Optional:
    ANTHROPIC_API_KEY  — Extraction collaborator (metrics + insights)
    MONGODB_URI        — Durable quarter store; in-process store when unset
    PORT               — Server port
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # SEC EDGAR API identity (name + email, required by SEC)
    edgar_identity: str = "SEC-Quarters sec-quarters@example.com"

    # Claude API for metric / insight extraction
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    extraction_max_tokens: int = 4096
    # Filing text sent to the extractor is truncated to this many characters
    max_filing_chars: int = 300_000

    # MongoDB for the permanent quarter store (optional)
    mongodb_uri: str = ""
    mongodb_database: str = "sec_quarters"

    # Quarterly form tracked by the change detector
    form_type: str = "10-Q"

    # Sparkline assembly
    sparkline_quarters: int = 8
    sparkline_cache_ttl: int = 3600

    # Submissions (filing metadata) cache in the SEC client
    filing_metadata_ttl: int = 120

    port: int = 8877
    log_level: str = "INFO"

    # Strip whitespace from string fields; the .env file often has
    # trailing spaces that break connection strings
    @field_validator("mongodb_uri", "anthropic_api_key", "edgar_identity", mode="before")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().strip('"').strip("'").strip()
        return v

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


_config: Settings | None = None


def get_config() -> Settings:
    """Get or create the shared Settings singleton."""
    global _config
    if _config is None:
        _config = Settings()
    return _config
