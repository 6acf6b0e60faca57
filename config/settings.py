"""Application settings loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Sampling
    sample_size: int = 500
    sampling_strategy: str = "smart"  # random | systematic | stratified | smart
    random_seed: int | None = None

    # Cleaning
    auto_clean: bool = True

    # Metrics
    retention_days: list[int] = [1, 3, 7, 14, 30]
    ltv_projection_days: int = 30

    # Insights
    min_insight_confidence: float = 0.5
    max_insights: int = 15
    min_insights: int = 5

    # LLM — external insights (Gemini)
    use_external_insights: bool = False
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"


settings = Settings()
