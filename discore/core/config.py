from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "postgresql://discore:discore@db:5432/discore"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Comma-separated allowed origins, or "*" to allow all.
    # Example: "https://dashboard.discore.gg,http://localhost:3000"
    CORS_ORIGINS: str = "*"

    # Generative model (Gemini)
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.0-flash-001"
    MODEL_TEMPERATURE: float = 0.1
    MODEL_TOP_P: float = 0.8
    MODEL_TOP_K: int = 1
    MODEL_MAX_OUTPUT_TOKENS: int = 1024
    MODEL_TIMEOUT_SECONDS: float = 30.0

    # Analysis pipeline
    ANALYSIS_BATCH_SIZE: int = 50
    ANALYSIS_WINDOW_HOURS: int = 24
    ANALYSIS_CONCURRENCY: int = 5
    ANALYSIS_BACKOFF_BASE_SECONDS: float = 0.5
    ANALYSIS_BACKOFF_MAX_SECONDS: float = 8.0

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_INTERVAL_SECONDS: int = 3600
    SCHEDULER_COOLDOWN_MINUTES: int = 55
    QUEUE_TRIGGER_THRESHOLD: int = 10
    BACKFILL_TRIGGER_THRESHOLD: int = 50
    CYCLE_EXCLUSION_LIMIT: int = 5000

    # Health aggregation
    ACTIVITY_LOW_CUTOFF: int = 10
    ACTIVITY_MEDIUM_CUTOFF: int = 25
    ACTIVITY_HIGH_CUTOFF: int = 40
    HEALTH_WEIGHT_ENGAGEMENT: float = 0.4
    HEALTH_WEIGHT_QUALITY: float = 0.4
    HEALTH_WEIGHT_TOXICITY: float = 0.2
    USER_SCORE_SATURATION: int = 100

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
