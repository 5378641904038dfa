from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8080
    API_HOT_RELOAD: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None
    APP_CONFIG_FILE: str = "./toolloom.yml"
    CHAT_TIMEOUT_S: float = 120.0
    MODELS_TIMEOUT_S: float = 20.0
    TOKEN_TIMEOUT_S: float = 30.0
    DEVICE_FLOW_TIMEOUT_S: float = 300.0
    SYSTEM_PROMPT: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

settings = Settings()
