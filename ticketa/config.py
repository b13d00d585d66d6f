from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # Database
    DATABASE_URL: Optional[str] = None
    PGHOST: str = "localhost"
    PGDATABASE: str = "ticketa"
    PGUSER: str = "ticketa"
    PGPASSWORD: str = ""
    PGSSLMODE: str = "require"

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Application
    PROJECT_NAME: str = "Ticketa Bus Ticketing"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173", "http://localhost:8080"]

    # Ticketing
    TICKET_CODE_PREFIX: str = "TKT"
    TICKET_CODE_LENGTH: int = 8

    # Scanning
    SCAN_DEBOUNCE_SECONDS: float = 2.0
    SCAN_COMPANY_POLICY: str = "open"  # "open" or "same_company"
    AUDIT_REJECTED_SCANS: bool = True
    DEFAULT_SCAN_LOCATION: str = "driver_scanner"

    # Realtime
    REALTIME_QUEUE_SIZE: int = 100

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.PGUSER}:{self.PGPASSWORD}@{self.PGHOST}/{self.PGDATABASE}?sslmode={self.PGSSLMODE}"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
