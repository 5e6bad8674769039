from typing import List

from pydantic_settings import BaseSettings



class Settings(BaseSettings):
    PROJECT_NAME: str = "DevConnect Realtime"
    DEBUG: bool = False

    DATABASE_URL: str = "sqlite+aiosqlite:///./devconnect.db"
    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    CORS_ORIGINS: List[str] = ["http://localhost:5173"]
    LOG_DIR: str = "logs"
    LOG_FILE: str = "devconnect.log"
    LOG_LEVEL: str = "INFO"
    LOG_MAX_BYTES: int = 5 * 1024 * 1024
    LOG_BACKUP_COUNT: int = 5
    WEBSOCKET_LOG_LEVEL: str = "INFO"
    PRESENCE_LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
