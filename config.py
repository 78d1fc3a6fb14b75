import os
from dataclasses import dataclass, field
from typing import List


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "shop"
    jwt_secret: str = "dev-secret-change"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    bcrypt_rounds: int = 10
    db_timeout_ms: int = 5000
    cart_write_attempts: int = 5
    log_level: str = "INFO"
    log_json: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    port: int = 8000


def load_settings() -> Settings:
    """Read settings from the environment."""
    return Settings(
        database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "shop"),
        jwt_secret=os.getenv("JWT_SECRET", "dev-secret-change"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60)),
        bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", 10)),
        db_timeout_ms=int(os.getenv("DB_TIMEOUT_MS", 5000)),
        cart_write_attempts=int(os.getenv("CART_WRITE_ATTEMPTS", 5)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_json=_env_bool("LOG_JSON", False),
        cors_origins=_env_list("CORS_ORIGINS", "*"),
        port=int(os.getenv("PORT", 8000)),
    )
