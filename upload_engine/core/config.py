import os
from pathlib import Path
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Resumable Upload Engine"
    API_PREFIX: str = "/api"

    # Chunking
    DEFAULT_CHUNK_SIZE: int = 10 * 1024 * 1024  # 10MB
    WRITE_BUFFER_SIZE: int = 64 * 1024  # pause is checked between buffers
    SEND_EMPTY_FINAL_CHUNK: bool = True

    # Progress notifications
    PROGRESS_INTERVAL_SECONDS: float = 0.1

    # Transport
    REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", 60))

    # Backoff after 503 / broken connections
    BACKOFF_INITIAL_SECONDS: float = 0.5
    BACKOFF_MULTIPLIER: float = 2.0
    BACKOFF_MAX_SECONDS: float = 30.0
    BACKOFF_MAX_ATTEMPTS: int = 8
    BACKOFF_JITTER: float = 0.1
    # Hard ceiling on retries without forward progress, whatever the policy says
    MAX_CONSECUTIVE_RETRIES: int = 50

    # Reference server storage settings
    UPLOAD_DIR: Path = Path("uploads")
    TEMP_DIR: Path = Path("uploads/temp")

    LOG_LEVEL: str = "INFO"

# Global settings instance
settings = Settings()
