from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Paths ──────────────────────────────────────────────────
    data_dir: Path = Path("data")

    # ── X / Twitter ────────────────────────────────────────────
    # Consumer pair identifies the app; the access pair is only used
    # by the CLI when no credential store entry is given.
    twitter_api_key: str = ""
    twitter_api_secret: str = ""
    twitter_access_token: str = ""
    twitter_access_secret: str = ""
    twitter_api_base: str = "https://api.x.com"

    # ── Instagram ──────────────────────────────────────────────
    instagram_access_token: str = ""
    instagram_business_account_id: str = ""
    instagram_graph_base: str = "https://graph.instagram.com/v24.0"

    # ── Media staging (S3-compatible, Cloudflare R2) ───────────
    r2_endpoint_url: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket: str = "mediabucket"
    r2_public_base_url: str = ""

    # ── App ────────────────────────────────────────────────────
    http_timeout: float = 30.0
    log_level: str = "INFO"

    @property
    def root_dir(self) -> Path:
        return Path(__file__).parent.parent

    @property
    def credentials_db(self) -> Path:
        return self.data_dir / "credentials.db"

    def ensure_data_dir(self) -> None:
        """Create the data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


settings = Settings()
