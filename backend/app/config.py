from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # Server
    ENVIRONMENT: str = "development"
    PORT: int = 3001
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:5173"]
    FRONTEND_DIST_PATH: str = "../frontend/dist"

    # Storage
    DATA_FILE_PATH: Optional[str] = None

    # WhatsApp Cloud API (workspace config overrides these per account)
    WHATSAPP_ACCESS_TOKEN: Optional[str] = None
    WHATSAPP_PHONE_NUMBER_ID: Optional[str] = None
    WHATSAPP_VERIFY_TOKEN: str = "verify-token"
    WHATSAPP_APP_SECRET: Optional[str] = None
    WHATSAPP_API_VERSION: str = "v21.0"

    # Automation defaults for newly created workspaces
    APP_TIMEZONE: str = "Asia/Kolkata"
    BUSINESS_HOURS_START: str = "09:00"
    BUSINESS_HOURS_END: str = "19:00"

    # Follow-up worker
    AUTOMATION_WORKER_ENABLED: bool = True
    AUTOMATION_INTERVAL_SECONDS: int = 60

    # Auth
    AUTH_SESSION_DAYS: int = 14

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

settings = Settings()
