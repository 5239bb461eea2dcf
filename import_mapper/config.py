"""Configuration management for the import field-mapping engine."""

from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load environment variables from .env file in ops folder
env_path = Path(__file__).parent.parent / "ops" / ".env"
load_dotenv(dotenv_path=env_path)


class OpenAIConfig(BaseSettings):
    """OpenAI API configuration."""

    api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    temperature: float = Field(default=0.1, alias="OPENAI_TEMPERATURE")
    max_tokens: Optional[int] = Field(default=1500, alias="OPENAI_MAX_TOKENS")
    timeout: int = Field(default=60, alias="OPENAI_TIMEOUT")

    class Config:
        env_file = "ops/.env"
        case_sensitive = False
        extra = "ignore"


class AnthropicConfig(BaseSettings):
    """Anthropic API configuration."""

    api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    model: str = Field(default="claude-3-5-haiku-20241022", alias="ANTHROPIC_MODEL")
    temperature: float = Field(default=0.1, alias="ANTHROPIC_TEMPERATURE")
    max_tokens: Optional[int] = Field(default=1500, alias="ANTHROPIC_MAX_TOKENS")
    timeout: int = Field(default=60, alias="ANTHROPIC_TIMEOUT")

    class Config:
        env_file = "ops/.env"
        case_sensitive = False
        extra = "ignore"


class MLflowConfig(BaseSettings):
    """MLflow tracking configuration."""

    tracking_uri: Optional[str] = Field(
        default="sqlite:///mlflow.db", alias="MLFLOW_TRACKING_URI"
    )
    experiment_name: str = Field(default="import-mapper", alias="MLFLOW_EXPERIMENT_NAME")
    run_name: Optional[str] = Field(default=None, alias="MLFLOW_RUN_NAME")
    enabled: bool = Field(default=False, alias="MLFLOW_ENABLED")

    class Config:
        env_file = "ops/.env"
        case_sensitive = False
        extra = "ignore"


class ThresholdConfig(BaseSettings):
    """Confidence thresholds used by the matchers, the arbiter and the orchestrator.

    All values are on the 0-100 confidence scale.
    """

    acceptance_threshold: float = Field(default=70.0, alias="MAPPER_ACCEPTANCE_THRESHOLD")
    """Minimum overall run confidence for an ``accepted`` result."""

    ambiguity_threshold: float = Field(default=70.0, alias="MAPPER_AMBIGUITY_THRESHOLD")
    """Fields whose best candidate is below this are sent to external inference."""

    acceptance_floor: float = Field(default=50.0, alias="MAPPER_ACCEPTANCE_FLOOR")
    """Minimum candidate confidence for a field to be mapped at all."""

    trustworthy_threshold: float = Field(default=80.0, alias="MAPPER_TRUSTWORTHY_THRESHOLD")
    """Decisions at or above this are written into the learning cache."""

    unmapped_tolerance: int = Field(default=0, alias="MAPPER_UNMAPPED_TOLERANCE")

    fuzzy_floor: float = Field(default=60.0, alias="MAPPER_FUZZY_FLOOR")
    fuzzy_max_confidence: float = Field(default=85.0, alias="MAPPER_FUZZY_MAX_CONFIDENCE")

    statistical_max_confidence: float = Field(default=85.0, alias="MAPPER_STATISTICAL_MAX_CONFIDENCE")
    statistical_type_only_max_confidence: float = Field(
        default=45.0, alias="MAPPER_STATISTICAL_TYPE_ONLY_MAX_CONFIDENCE"
    )
    statistical_min_confidence: float = Field(default=30.0, alias="MAPPER_STATISTICAL_MIN_CONFIDENCE")

    historical_shape_only_factor: float = Field(default=0.8, alias="MAPPER_HISTORICAL_SHAPE_ONLY_FACTOR")
    historical_ambiguous_shape_penalty: float = Field(
        default=10.0, alias="MAPPER_HISTORICAL_AMBIGUOUS_SHAPE_PENALTY"
    )
    """Subtracted from shape-key candidates when the shape points to several targets."""

    external_min_confidence: float = Field(default=40.0, alias="MAPPER_EXTERNAL_MIN_CONFIDENCE")
    external_max_confidence: float = Field(default=89.0, alias="MAPPER_EXTERNAL_MAX_CONFIDENCE")

    class Config:
        env_file = "ops/.env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


class BudgetConfig(BaseSettings):
    """Cost controls for the paid external-inference strategy."""

    external_enabled: bool = Field(default=True, alias="MAPPER_EXTERNAL_ENABLED")
    cost_ceiling: float = Field(default=0.001, alias="MAPPER_COST_CEILING")
    per_call_cost_estimate: float = Field(default=0.0004, alias="MAPPER_PER_CALL_COST_ESTIMATE")

    class Config:
        env_file = "ops/.env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


class TimeoutConfig(BaseSettings):
    """Per-strategy and per-run time limits (seconds)."""

    strategy_timeout_seconds: float = Field(default=5.0, alias="MAPPER_STRATEGY_TIMEOUT")
    external_timeout_seconds: float = Field(default=15.0, alias="MAPPER_EXTERNAL_TIMEOUT")
    default_deadline_seconds: Optional[float] = Field(default=None, alias="MAPPER_DEFAULT_DEADLINE")

    class Config:
        env_file = "ops/.env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


class DecoderConfig(BaseSettings):
    """Tabular decoder settings."""

    sample_size: int = Field(default=20, alias="DECODER_SAMPLE_SIZE")
    type_inference_rows: int = Field(default=50, alias="DECODER_TYPE_INFERENCE_ROWS")
    max_multiline_rows: int = Field(default=10, alias="DECODER_MAX_MULTILINE_ROWS")
    max_cell_length: int = Field(default=131072, alias="DECODER_MAX_CELL_LENGTH")
    """Rows with a longer cell are skipped as unparseable."""

    class Config:
        env_file = "ops/.env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


class LearningCacheConfig(BaseSettings):
    """Learning cache storage settings."""

    database_path: Path = Field(
        default=Path("data/field_mapping_cache.db"), alias="LEARNING_CACHE_DATABASE_PATH"
    )
    memory_cache_size: int = Field(default=1000, alias="LEARNING_CACHE_MEMORY_SIZE")
    max_age_days: int = Field(default=90, alias="LEARNING_CACHE_MAX_AGE_DAYS")
    eviction_min_observations: int = Field(default=3, alias="LEARNING_CACHE_EVICTION_MIN_OBSERVATIONS")

    class Config:
        env_file = "ops/.env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


class AppConfig(BaseSettings):
    """Main application configuration."""

    app_name: str = Field(default="import-mapper", alias="APP_NAME")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Per-Agent LLM Selection
    field_inference_llm: str = Field(default="openai", alias="FIELD_INFERENCE_LLM")

    # LLM Provider Settings
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    anthropic: AnthropicConfig = Field(default_factory=AnthropicConfig)

    # Engine settings
    thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    decoder: DecoderConfig = Field(default_factory=DecoderConfig)
    learning_cache: LearningCacheConfig = Field(default_factory=LearningCacheConfig)

    # MLflow configuration
    mlflow: MLflowConfig = Field(default_factory=MLflowConfig)

    class Config:
        env_file = "ops/.env"
        case_sensitive = False
        extra = "ignore"


# Global configuration instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    return config


def reload_config() -> AppConfig:
    """Reload configuration from environment variables."""
    global config
    config = AppConfig()
    return config
