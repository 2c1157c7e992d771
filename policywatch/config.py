from typing import Dict, List, Optional
from pydantic import PostgresDsn, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "PolicyWatch"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/v1"
    LOG_LEVEL: str = "INFO"

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "policywatch"
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # full URL override, e.g. sqlite+aiosqlite:///./local.db
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_ECHO: bool = False

    @computed_field
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return str(PostgresDsn.build(
            scheme="postgresql+asyncpg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        ))

    # LLM provider
    LLM_PROVIDER_ANALYSIS: str = "openai"

    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL_ANALYSIS: str = "gpt-4o-mini"

    OPENROUTER_API_KEY: Optional[str] = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_MODEL_ANALYSIS: str = "anthropic/claude-3.5-sonnet"

    AZURE_OPENAI_API_KEY: Optional[str] = None
    AZURE_OPENAI_ENDPOINT: Optional[str] = None
    AZURE_OPENAI_API_VERSION: str = "2024-10-21"
    AZURE_OPENAI_MODEL_ANALYSIS: str = "gpt-4o"

    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_MODEL_ANALYSIS: str = "claude-3-5-sonnet-latest"

    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL_ANALYSIS: str = "gpt-oss:20b"

    # LLM transport
    LLM_REQUEST_TIMEOUT_SECONDS: float = 120.0
    LLM_CONNECT_TIMEOUT_SECONDS: float = 10.0
    LLM_RETRY_ATTEMPTS: int = 3
    LLM_RETRY_INITIAL_DELAY_MS: int = 1000
    LLM_RETRY_MULTIPLIER: float = 2.0
    LLM_RETRYABLE_STATUS_CODES: List[int] = [429, 500, 502, 503, 504]
    LLM_RATE_LIMIT_RPM: int = 60

    # USD per million tokens: {"input": ..., "output": ...}
    LLM_PRICING: Dict[str, Dict[str, float]] = {
        "anthropic/claude-3.5-sonnet": {"input": 3.0, "output": 15.0},
        "anthropic/claude-3-haiku": {"input": 0.25, "output": 1.25},
        "openai/gpt-4o": {"input": 2.5, "output": 10.0},
        "openai/gpt-4o-mini": {"input": 0.15, "output": 0.6},
        "gpt-4o": {"input": 2.5, "output": 10.0},
        "gpt-4o-mini": {"input": 0.15, "output": 0.6},
    }
    LLM_REASONING_MODEL_PREFIXES: List[str] = ["gpt-5-nano", "gpt-5", "o1", "o3"]

    # Analysis
    CHUNK_TOKENS: int = 3500
    APPROX_CHARS_PER_TOKEN: int = 4
    ANALYSIS_REASONING_MAX_TOKENS: int = 16000
    ANALYSIS_STANDARD_MAX_TOKENS: int = 4096
    ANALYSIS_CHUNK_CONCURRENCY: int = 1
    ANALYSIS_DEADLINE_SECONDS: float = 900.0
    ANALYSIS_STALE_JOB_MINUTES: int = 30
    CHANGE_SAMPLE_CHARS: int = 3000

    # Diff
    DIFF_CONTEXT_LINES: int = 3
    DIFF_MAX_LINE_PRODUCT: int = 25_000_000

    # Scoring
    SCORING_CONFIG_PATH: Optional[str] = None

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env")

settings = Settings()
