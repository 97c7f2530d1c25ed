import os
from dataclasses import dataclass
from pathlib import Path


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class Settings:
    host: str
    port: int
    jwt_secret: str
    database_url: str
    database_name: str
    environment: str = "production"
    log_level: str = "INFO"
    token_ttl_hours: int = 24

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


DEV_JWT_SECRET = "dev-only-ledger-secret-5b7c0f3e9a1d4e26"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def load_settings() -> Settings:
    environment = os.getenv("LEDGER_ENV", "production").lower()
    database_name = os.getenv("LEDGER_DATABASE_NAME", "ledger")
    database_url = os.getenv("LEDGER_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / f'{database_name}.db'}"

    jwt_secret = os.getenv("LEDGER_JWT_SECRET")
    if not jwt_secret:
        if environment != "development":
            raise ConfigError('No env named: "LEDGER_JWT_SECRET" found.')
        jwt_secret = DEV_JWT_SECRET

    default_level = "DEBUG" if environment == "development" else "INFO"
    return Settings(
        host=os.getenv("LEDGER_HOST", "127.0.0.1"),
        port=int(os.getenv("LEDGER_PORT", "8000")),
        jwt_secret=jwt_secret,
        database_url=database_url,
        database_name=database_name,
        environment=environment,
        log_level=os.getenv("LEDGER_LOG_LEVEL", default_level).upper(),
        token_ttl_hours=int(os.getenv("LEDGER_TOKEN_TTL_HOURS", "24")),
    )
