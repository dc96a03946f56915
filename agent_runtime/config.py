from __future__ import annotations

import logging
import os
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .constants import (
    DEFAULT_INPUT_OUTPUT_RATIO,
    DEFAULT_MAX_CONTEXT_TOKENS,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_SUBSCRIBER_QUEUE_SIZE,
    DEFAULT_TEMPERATURE,
)
from .context.strategies import (
    ContextManager,
    MessageTypeManager,
    NoOpManager,
    SlidingWindowManager,
    SummarizationManager,
    TokenBudgetManager,
)
from .errors import ConfigError
from .utils.retry import RetryPolicy
from .utils.timeout import TimeoutPolicy

StrategyName = Literal["noop", "token_budget", "sliding_window", "message_type", "summarization"]


class TimeoutConfig(BaseModel):
    """Time limits for LLM and tool operations, in milliseconds."""

    total_ms: Optional[int] = Field(default=300_000, gt=0)
    first_response_ms: Optional[int] = Field(default=30_000, gt=0)

    def to_policy(self) -> TimeoutPolicy:
        return TimeoutPolicy(
            total=self.total_ms / 1000 if self.total_ms is not None else None,
            first_response=(
                self.first_response_ms / 1000 if self.first_response_ms is not None else None
            ),
        )


class AgentDefaults(BaseModel):
    """Defaults applied to agents built through the config."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    temperature: Optional[float] = DEFAULT_TEMPERATURE
    max_tokens: Optional[int] = None
    streaming: bool = False
    tool_loop_detection: bool = True
    timeout: TimeoutConfig = Field(default_factory=TimeoutConfig)

    def to_agent_config(self, name: str, **overrides: Any):
        """Build an AgentConfig for ``name`` seeded with these defaults."""
        from .agent import AgentConfig
        from .tools.loop_detection import ToolLoopDetectionConfig

        fields: Dict[str, Any] = {
            "name": name,
            "max_iterations": self.max_iterations,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "streaming": self.streaming,
            "tool_loop_detection": ToolLoopDetectionConfig(enabled=self.tool_loop_detection),
            "timeout": self.timeout.to_policy(),
        }
        fields.update(overrides)
        return AgentConfig(**fields)


class ContextConfig(BaseModel):
    """Shared conversation context settings."""

    max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS
    input_output_ratio: float = DEFAULT_INPUT_OUTPUT_RATIO
    strategy: StrategyName = "noop"
    safety_buffer: int = 0
    max_messages: int = 50
    keep_recent_pairs: int = 5
    summarization_threshold: Optional[int] = None
    summary_keep_recent: int = 10

    @field_validator("input_output_ratio")
    @classmethod
    def _positive_ratio(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("input_output_ratio must be positive")
        return value

    def build_manager(self) -> ContextManager:
        """Instantiate the configured pruning strategy."""
        if self.strategy == "token_budget":
            return TokenBudgetManager(
                self.max_context_tokens,
                self.input_output_ratio,
                safety_buffer=self.safety_buffer,
            )
        if self.strategy == "sliding_window":
            return SlidingWindowManager(self.max_messages)
        if self.strategy == "message_type":
            return MessageTypeManager(self.max_messages, self.keep_recent_pairs)
        if self.strategy == "summarization":
            max_input = int(
                self.max_context_tokens * self.input_output_ratio / (self.input_output_ratio + 1)
            )
            threshold = self.summarization_threshold or int(max_input * 0.8)
            return SummarizationManager(
                max_input,
                threshold,
                keep_recent=self.summary_keep_recent,
            )
        return NoOpManager()


class EventBusConfig(BaseModel):
    """Event bus sizing."""

    subscriber_queue_size: int = DEFAULT_SUBSCRIBER_QUEUE_SIZE


class RetryConfig(BaseModel):
    """Retry settings for chat clients."""

    max_attempts: int = 3
    initial_delay_ms: int = 100
    max_delay_ms: int = 30_000
    multiplier: float = 2.0
    jitter: float = 0.1

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay_ms / 1000,
            max_delay=self.max_delay_ms / 1000,
            multiplier=self.multiplier,
            jitter=self.jitter,
        )


class LoggingConfig(BaseModel):
    """Logging setup for the ``agent_runtime`` logger hierarchy."""

    level: str = "WARNING"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class RuntimeConfig(BaseModel):
    """Top-level configuration model."""

    agent: AgentDefaults = Field(default_factory=AgentDefaults)
    context: ContextConfig = Field(default_factory=ContextConfig)
    events: EventBusConfig = Field(default_factory=EventBusConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Optional[str] = None) -> RuntimeConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to AGENT_RUNTIME_CONFIG
            env variable or 'agent_runtime.yaml' in the current directory.
    """

    config_path = path or os.getenv("AGENT_RUNTIME_CONFIG", "agent_runtime.yaml")
    data: Dict[str, Any] = {}
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")
    elif path:
        raise ConfigError(f"Config file not found: {path}")

    try:
        config = RuntimeConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {config_path}: {exc}") from exc

    env_level = os.getenv("AGENT_RUNTIME_LOG_LEVEL")
    if env_level:
        config.logging.level = env_level.upper()
    env_tokens = os.getenv("AGENT_RUNTIME_MAX_CONTEXT_TOKENS")
    if env_tokens:
        try:
            config.context.max_context_tokens = int(env_tokens)
        except ValueError as exc:
            raise ConfigError(
                f"AGENT_RUNTIME_MAX_CONTEXT_TOKENS must be an integer, got {env_tokens!r}",
                field="context.max_context_tokens",
            ) from exc
    env_strategy = os.getenv("AGENT_RUNTIME_CONTEXT_STRATEGY")
    if env_strategy:
        try:
            config.context = ContextConfig(**{**config.context.model_dump(), "strategy": env_strategy})
        except ValidationError as exc:
            raise ConfigError(
                f"Unknown context strategy: {env_strategy}", field="context.strategy"
            ) from exc
    return config


def configure_logging(config: Optional[RuntimeConfig] = None) -> None:
    """Attach a stream handler to the ``agent_runtime`` logger."""

    config = config or load_config()
    logger = logging.getLogger("agent_runtime")
    logger.setLevel(config.logging.level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(config.logging.format))
        logger.addHandler(handler)
