from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""

    # Dashboard CORS origins (comma-separated)
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Open views re-fetch periods and the selected planilha at this interval
    view_refresh_interval_seconds: float = 5.0

    # Views not touched by the dashboard for this long are dropped by the refresher
    view_idle_timeout_seconds: float = 300.0

    # Reference fee (%) used for repasses when neither the admin nor the planilha
    # provides one
    default_fee_rate_percent: str = "5.10"

    # Upload limits
    max_upload_bytes: int = 5 * 1024 * 1024
    allowed_upload_extensions: str = ".xlsx,.csv"

    # Local business timezone (Brasília)
    timezone_offset_hours: int = -3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def upload_extensions(self) -> set[str]:
        return {
            ext.strip().lower()
            for ext in self.allowed_upload_extensions.split(",")
            if ext.strip()
        }


settings = Settings()
