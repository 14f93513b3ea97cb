from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env values for components that read os.environ directly.
_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Comma-separated list of origins allowed to call the control API.
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"

    AUDIT_API_BASE_URL: str = "http://localhost:5000"
    AUDIT_API_TOKEN: str | None = None
    AUDIT_API_TIMEOUT_SECONDS: float = 60.0
    # A full account sync walks every campaign, ad set and ad before answering.
    SYNC_REQUEST_TIMEOUT_SECONDS: float = 600.0
    # Completed sync summaries stay visible this long before auto-dismissal.
    SYNC_COMPLETION_DWELL_SECONDS: float = 2.0

    @field_validator("AUDIT_API_BASE_URL")
    @classmethod
    def strip_base_url(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if not cleaned:
            raise ValueError("AUDIT_API_BASE_URL cannot be empty")
        return cleaned

    @field_validator("SYNC_COMPLETION_DWELL_SECONDS")
    @classmethod
    def validate_dwell(cls, value: float) -> float:
        if value < 0:
            raise ValueError("SYNC_COMPLETION_DWELL_SECONDS cannot be negative")
        return value

    @property
    def cors_origins(self) -> list[str]:
        return sorted({origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()})

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
