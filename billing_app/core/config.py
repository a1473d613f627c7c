from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, Optional
from pydantic import field_validator

class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'billing_user'
    POSTGRES_PASSWORD: str = 'billing_pass'
    POSTGRES_DB: str = 'billing_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Sobrescribe la URL construida (ej. sqlite)

    # Document store
    STORE_BACKEND: str = 'sql'  # "sql" o "memory"
    STORE_TIMEOUT_SECONDS: Optional[float] = 10.0

    # Numeración y reintentos
    SEQUENCE_MAX_ATTEMPTS: int = 25
    INVENTORY_MAX_ATTEMPTS: int = 10
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_BACKOFF_MS: int = 300

    # Directorio de empresas: entradas extra nombre -> prefijo
    COMPANY_PREFIXES: Dict[str, str] = {}

    # Email settings
    EMAIL_SMTP_SERVER: str = 'smtp.gmail.com'
    EMAIL_SMTP_PORT: int = 587
    EMAIL_USE_TLS: bool = True
    EMAIL_USERNAME: str = ''
    EMAIL_PASSWORD: str = ''
    EMAIL_FROM: str = ''
    EMAIL_FROM_NAME: str = 'Wyenfos Bills'
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("EMAIL_USE_TLS", mode="before")
    @classmethod
    def parse_email_tls(cls, v):
        if isinstance(v, str):
            return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
        return bool(v)

    @field_validator("STORE_TIMEOUT_SECONDS", mode="before")
    @classmethod
    def parse_store_timeout(cls, v):
        # "0", "" o "none" desactivan el límite de tiempo
        if isinstance(v, str):
            cleaned = v.lower().strip('"').strip("'")
            if cleaned in ("", "0", "none", "null"):
                return None
            return float(cleaned)
        if v is not None and v <= 0:
            return None
        return v

settings = Settings()
