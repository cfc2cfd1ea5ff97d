"""Myamori configuration schema: YAML + Pydantic + env override."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from myamori.agent.steps import Backoff, RetryPolicy

FALLBACK_REPLY = (
    "Sorry, I encountered an error processing your message. Please try again later."
)


# ════════════════════════════════════════════════════════════
# SUB-CONFIGS (nested BaseModel)
# ════════════════════════════════════════════════════════════


class ProviderConfig(BaseModel):
    """Single LLM provider."""

    api_key: str = ""
    api_base: str | None = None


class ProvidersConfig(BaseModel):
    """LLM providers (LiteLLM multi-provider)."""

    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)


class AssistantConfig(BaseModel):
    """Main assistant (assistant.*)."""

    name: str = "Myamori"
    model: str = "anthropic/claude-haiku-4-5"
    temperature: float = 0.7
    max_tokens: int = 4096
    max_steps: int = 5
    fallback_reply: str = FALLBACK_REPLY


class TelegramConfig(BaseModel):
    bot_token: str = ""
    api_base: str = "https://api.telegram.org/bot{token}"
    timeout_s: float = 10.0


class StepPolicyConfig(BaseModel):
    """Retry/timeout policy for one durable step."""

    retries: int = 0
    delay_s: float = 0.0
    backoff: Backoff = Backoff.EXPONENTIAL
    timeout_s: float | None = None

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            limit=self.retries,
            delay_s=self.delay_s,
            backoff=self.backoff,
            timeout_s=self.timeout_s,
        )


class TurnConfig(BaseModel):
    """Per-step policies of the turn pipeline."""

    load_history: StepPolicyConfig = Field(default_factory=StepPolicyConfig)
    call_llm: StepPolicyConfig = Field(
        default_factory=lambda: StepPolicyConfig(
            retries=3, delay_s=5.0, backoff=Backoff.EXPONENTIAL, timeout_s=300.0
        )
    )
    send_reply: StepPolicyConfig = Field(
        default_factory=lambda: StepPolicyConfig(timeout_s=30.0)
    )
    save_history: StepPolicyConfig = Field(default_factory=StepPolicyConfig)


class HistoryConfig(BaseModel):
    limit: int = 20


class SchedulerConfig(BaseModel):
    enabled: bool = True
    tick_cron: str = "* * * * *"


class ApprovalConfig(BaseModel):
    ttl_minutes: int = 10


class DatabaseConfig(BaseModel):
    path: str = "data/myamori.db"


# ════════════════════════════════════════════════════════════
# ROOT CONFIG (BaseSettings, env + .env support)
# ════════════════════════════════════════════════════════════


class Config(BaseSettings):
    """
    Root configuration.

    Priority: env vars > .env > YAML (init kwargs) > defaults

    Env override examples:
        MYAMORI_ASSISTANT__MODEL=openai/gpt-4o
        MYAMORI_DATABASE__PATH=data/prod.db
        MYAMORI_TELEGRAM__BOT_TOKEN=123:abc
    """

    model_config = SettingsConfigDict(
        env_prefix="MYAMORI_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    turn: TurnConfig = Field(default_factory=TurnConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML arrives as init kwargs; env must win over it
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def db_path(self) -> Path:
        return Path(self.database.path)

    def get_api_base(self, model: str | None = None) -> str | None:
        """Get API base URL for model name."""
        model_name = (model or self.assistant.model).lower()
        if "openrouter" in model_name:
            return self.providers.openrouter.api_base or "https://openrouter.ai/api/v1"
        for name in ProvidersConfig.model_fields:
            p = getattr(self.providers, name)
            if isinstance(p, ProviderConfig) and name in model_name and p.api_base:
                return p.api_base
        return None
