import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}

def _getenv_csv_set(name: str) -> set[str]:
    raw = _getenv(name)
    if raw is None:
        return set()
    parts = [p.strip().lower() for p in raw.split(",")]
    return {p for p in parts if p}


class Settings:
    def __init__(self) -> None:
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./credits.db") or "sqlite:///./credits.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS", "*")

        self.supabase_url = _getenv("SUPABASE_URL") or _getenv("VITE_SUPABASE_URL")
        self.supabase_jwt_audience = _getenv("SUPABASE_JWT_AUD", "authenticated")
        self.supabase_jwt_issuer = _getenv("SUPABASE_JWT_ISSUER")
        self.supabase_jwt_secret = _getenv("SUPABASE_JWT_SECRET")

        self.thrivecart_secret = _getenv("THRIVECART_SECRET")

        self.fanbases_api_key = _getenv("FANBASES_API_KEY")
        self.fanbases_api_url = (
            _getenv("FANBASES_API_URL", "https://www.fanbasis.com/public-api") or "https://www.fanbasis.com/public-api"
        ).rstrip("/")
        self.fanbases_webhook_secret = _getenv("FANBASES_WEBHOOK_SECRET")
        self.fanbases_strict_verification = _getenv_bool("FANBASES_STRICT_VERIFICATION", default=False)
        self.fanbases_timeout_s = float(_getenv("FANBASES_TIMEOUT_S", "30") or "30")

        self.admin_emails = _getenv_csv_set("ADMIN_EMAILS")

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None or raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()


def get_settings() -> Settings:
    return settings
