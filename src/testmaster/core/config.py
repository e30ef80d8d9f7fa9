from pydantic_settings import BaseSettings
from pydantic import Field, validator
from dotenv import load_dotenv

load_dotenv("src/testmaster/.env")

class Settings(BaseSettings):
    # AI collaborator
    MODEL_PROVIDER: str = "online"  # "online" for Gemini, "local" for Ollama
    GEMINI_API_KEY: str | None = None
    ONLINE_MODEL: str = "gemini/gemini-2.5-flash"
    LOCAL_MODEL: str = "ollama/llama3"
    AI_ENABLED: bool = Field(default=True, description="Enable AI-assisted visual healing and failure analysis")
    AI_TIMEOUT: int = Field(default=60, description="Timeout for a single AI completion (in seconds)")

    # Service Configuration
    APP_PORT: int = Field(default=5000, description="Port for FastAPI service")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_DIR: str = Field(default="logs", description="Directory for rotating log files")
    MAX_CONCURRENT_SESSIONS: int = Field(default=3, description="Maximum testing sessions running at once")
    SESSION_RETENTION_HOURS: float = Field(default=24, description="Hours a finished session stays queryable before it is pruned")

    # Healing storage and configuration
    HEALING_DB_PATH: str = Field(default="data/healing_events.db", description="SQLite file holding healing events")
    HEALING_CONFIG_PATH: str = Field(default="config/self_healing.yaml", description="YAML file with healing thresholds and strategies")

    # Artifacts
    REPORTS_DIR: str = Field(default="test-results/reports", description="Where HTML/JSON reports are written")
    SCREENSHOTS_DIR: str = Field(default="test-results/screenshots", description="Where failure screenshots are written")
    VIDEOS_DIR: str = Field(default="test-results/videos", description="Where execution videos are written")

    # Browser
    BROWSER_HEADLESS: bool = Field(default=True, description="Launch browsers headless unless a session overrides it")
    NAVIGATION_TIMEOUT_MS: int = Field(default=30000, description="Page navigation timeout (in milliseconds)")
    ELEMENT_TIMEOUT_MS: int = Field(default=5000, description="Element wait timeout for test steps (in milliseconds)")

    @validator('MODEL_PROVIDER')
    def validate_model_provider(cls, v):
        """Validate that MODEL_PROVIDER is either 'online' or 'local'."""
        if v.lower() not in ['online', 'local']:
            raise ValueError(f"MODEL_PROVIDER must be 'online' or 'local', got '{v}'")
        return v.lower()

    @validator('LOG_LEVEL')
    def validate_log_level(cls, v):
        if v.upper() not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            raise ValueError(f"LOG_LEVEL must be a standard logging level, got '{v}'")
        return v.upper()

    @validator('MAX_CONCURRENT_SESSIONS')
    def validate_max_sessions(cls, v):
        """Validate that MAX_CONCURRENT_SESSIONS is between 1 and 20."""
        if v < 1 or v > 20:
            raise ValueError(f"MAX_CONCURRENT_SESSIONS must be between 1 and 20, got {v}")
        return v

    @validator('SESSION_RETENTION_HOURS')
    def validate_retention(cls, v):
        if v < 0:
            raise ValueError(f"SESSION_RETENTION_HOURS must not be negative, got {v}")
        return v

    @validator('AI_TIMEOUT', 'NAVIGATION_TIMEOUT_MS', 'ELEMENT_TIMEOUT_MS')
    def validate_positive_timeout(cls, v):
        if v <= 0:
            raise ValueError(f"Timeouts must be positive, got {v}")
        return v

    @property
    def model_name(self) -> str:
        return self.ONLINE_MODEL if self.MODEL_PROVIDER == "online" else self.LOCAL_MODEL

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'allow'  # Allow extra fields from .env file

settings = Settings()
