# settings.py
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    APP_NAME: str = "remember"
    LOG_LEVEL: str = "INFO"

    DB_PATH: str = "./remember.db"

    # current-principal session cookie
    SESSION_COOKIE_NAME: str = "op_sid"
    SESSION_TTL_SECONDS: int = 8 * 60 * 60      # 8h
    SESSION_ABSOLUTE_SECONDS: int = 24 * 60 * 60  # 1d

    # persistent login cookie
    REMEMBER_COOKIE_NAME: str = "op_remember"
    REMEMBER_TIMEOUT_DAYS: int = 30  # since first login, not sliding
    REMEMBER_COOKIE_PATH: str = "/"

    COOKIE_SECURE: bool = True
    COOKIE_SAMESITE: str = "lax"  # "lax" | "strict" | "none"

    DEV_MODE: bool = False
    DEV_LOCAL_USERS: bool = True
    BCRYPT_ROUNDS: int = 12

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("REMEMBER_TIMEOUT_DAYS")
    @classmethod
    def _positive_days(cls, v: int) -> int:
        if v < 1:
            raise ValueError("REMEMBER_TIMEOUT_DAYS must be at least 1")
        return v

    @field_validator("SESSION_COOKIE_NAME", "REMEMBER_COOKIE_NAME", "REMEMBER_COOKIE_PATH")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v

    @property
    def remember_timeout_seconds(self) -> int:
        return self.REMEMBER_TIMEOUT_DAYS * 24 * 60 * 60

    @property
    def cookie_secure(self) -> bool:
        # local http dev servers can't round-trip secure cookies
        return self.COOKIE_SECURE and not self.DEV_MODE

settings = Settings()
