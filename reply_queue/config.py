"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- ProviderConfig: completion API endpoint, model and credentials
- RateLimitConfig: retry and backoff limits for the completion API
- MatchingConfig: relevance threshold, result caps and call parameters
- PromptConfig: truncation budgets for prompt construction
- FeedConfig: feed fetching and feed cache settings
- CatalogConfig: model catalog allow-list and filter defaults
- StorageConfig: local store path and storage tier limits
- LoggingConfig: Logging behavior
- LangfuseConfig: Langfuse tracing settings
- AppConfig: Root configuration container
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import os
from typing import Any

import yaml


THRESHOLD_PRESETS = {
    "low": 0.2,
    "medium": 0.3,
    "high": 0.5,
}


@dataclass
class ProviderConfig:
    """Configuration for the completion API provider.

    Attributes:
        base_url: Base URL of the OpenRouter-compatible API
        model: Model identifier used for matching, suggestions and heat checks
        api_key_env: Environment variable name containing the API key
        api_key: Optional inline API key (overrides env var)
        referer: Value sent as the HTTP-Referer attribution header
        title: Value sent as the X-Title attribution header
        timeout_seconds: HTTP request timeout
        trust_env: Whether to respect system proxy settings for API requests
    """

    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "anthropic/claude-haiku-4.5"
    api_key_env: str = "OPENROUTER_API_KEY"
    api_key: str | None = None
    referer: str = "https://github.com/replyqueue"
    title: str = "ReplyQueue"
    timeout_seconds: float = 60.0
    trust_env: bool = True


@dataclass
class RateLimitConfig:
    """Retry policy for the completion API.

    Attributes:
        max_retries: Retries after the first attempt on retryable failures
        base_delay_seconds: Backoff base; delay = base * 2 ** attempt
        max_delay_seconds: Ceiling applied to every computed backoff delay
    """

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0


@dataclass
class MatchingConfig:
    """Configuration for match passes.

    Attributes:
        threshold: Minimum relevance score (0-1) for a post to be kept
        max_posts: Maximum matches returned by a single pass
        max_matched_posts: Cap applied when merging into the stored match set
        ai_cache_ttl_minutes: Lifetime of in-memory AI match and tone results
        suggestions_count: Reply suggestions requested per matched post
        match_temperature: Sampling temperature for batch matching
        suggestion_temperature: Sampling temperature for reply suggestions
        heat_check_temperature: Sampling temperature for tone classification
        max_tokens: Completion token budget per call
    """

    threshold: float = 0.3
    max_posts: int = 20
    max_matched_posts: int = 100
    ai_cache_ttl_minutes: int = 30
    suggestions_count: int = 3
    match_temperature: float = 0.7
    suggestion_temperature: float = 0.8
    heat_check_temperature: float = 0.3
    max_tokens: int = 16384


@dataclass
class PromptConfig:
    """Truncation budgets for prompt construction.

    A character limit of 0 disables truncation for that field.

    Attributes:
        max_blog_items: Number of feed items summarized in a prompt
        suggestion_blog_items: Feed items summarized in a single-post suggestions prompt
        blog_content_char_limit: Characters of each feed item body included
        post_content_char_limit: Characters of each post body included
        max_style_examples: Writing style examples included
    """

    max_blog_items: int = 5
    suggestion_blog_items: int = 3
    blog_content_char_limit: int = 200
    post_content_char_limit: int = 500
    max_style_examples: int = 15


@dataclass
class FeedConfig:
    """Configuration for fetching the user's feed.

    Attributes:
        timeout_seconds: HTTP request timeout
        retries: Number of retry attempts for transport failures
        user_agent: HTTP User-Agent header string
        max_items: Items kept from a parsed feed
        cache_ttl_minutes: Lifetime of the stored parsed feed
        trust_env: Whether to respect system proxy settings
    """

    timeout_seconds: float = 20.0
    retries: int = 2
    user_agent: str = "ReplyQueue/0.1 (+https://github.com/replyqueue)"
    max_items: int = 50
    cache_ttl_minutes: int = 60
    trust_env: bool = True


@dataclass
class CatalogConfig:
    """Configuration for the model catalog.

    Attributes:
        recommended_models: Allow-list used to flag recommended models
        cache_ttl_minutes: Lifetime of the in-memory model list
        max_price: Default maximum blended price per 1M tokens
        max_age_days: Default maximum model age in days
    """

    recommended_models: list[str] = field(
        default_factory=lambda: [
            "anthropic/claude-haiku-4.5",
            "anthropic/claude-sonnet-4.5",
        ]
    )
    cache_ttl_minutes: int = 60
    max_price: float = 10.0
    max_age_days: int = 365


@dataclass
class StorageConfig:
    """Configuration for the durable store.

    Attributes:
        path: JSON file backing the local tier
        sync_item_limit_bytes: Per-item ceiling of the synced tier
        max_extracted_posts: Extracted posts kept in the queue store
        max_example_comments: Writing style examples kept
        max_queue_size: Unanalyzed posts accepted before new ones are refused
    """

    path: str = ".reply_queue/store.json"
    sync_item_limit_bytes: int = 8192
    max_extracted_posts: int = 500
    max_example_comments: int = 10
    max_queue_size: int = 50


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to console
        file: Whether to log to file
        format: Log file format ("jsonl" or "plain")
        filename: Name of the main log file
        llm_log_enabled: Whether to enable separate LLM interaction logging
        llm_log_detail: LLM log detail level ("response_only", "prompt_response")
        llm_log_redaction: Redaction mode for LLM logs ("none", "redact_content", "redact_urls_authors")
        llm_log_file: Name of the LLM log file
    """

    level: str = "INFO"
    console: bool = True
    file: bool = False
    format: str = "jsonl"
    filename: str = "run.jsonl"
    llm_log_enabled: bool = False
    llm_log_detail: str = "response_only"
    llm_log_redaction: str = "redact_urls_authors"
    llm_log_file: str = "llm.jsonl"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse tracing.

    Attributes:
        enabled: Whether to enable Langfuse tracing
        public_key: Langfuse public key (optional)
        secret_key: Langfuse secret key (optional)
        host: Langfuse host URL (optional)
        environment: Langfuse environment label (optional)
        release: Langfuse release identifier (optional)
        redaction: Redaction mode for prompt/response payloads
        max_text_chars: Maximum characters for prompt/response payloads
    """

    enabled: bool = False
    public_key: str | None = None
    secret_key: str | None = None
    host: str | None = None
    environment: str | None = None
    release: str | None = None
    redaction: str = "redact_urls_authors"
    max_text_chars: int = 20000


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    prompt: PromptConfig = field(default_factory=PromptConfig)
    feed: FeedConfig = field(default_factory=FeedConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)


_SECTIONS: dict[str, type] = {
    "provider": ProviderConfig,
    "rate_limit": RateLimitConfig,
    "matching": MatchingConfig,
    "prompt": PromptConfig,
    "feed": FeedConfig,
    "catalog": CatalogConfig,
    "storage": StorageConfig,
    "logging": LoggingConfig,
    "langfuse": LangfuseConfig,
}


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults."""
    if not path:
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    return _merge_config(AppConfig(), raw)


def _merge_config(base: AppConfig, raw: dict[str, Any]) -> AppConfig:
    """Merge raw YAML config into base AppConfig.

    Unknown sections and unknown keys are ignored. A threshold given as a
    preset name ("low", "medium", "high") is resolved to its value.
    """
    data = asdict(base)
    for key, value in raw.items():
        if key not in data:
            continue
        if isinstance(value, dict) and isinstance(data[key], dict):
            known = {k: v for k, v in value.items() if k in data[key]}
            data[key].update(known)
        else:
            data[key] = value

    threshold = data["matching"].get("threshold")
    if isinstance(threshold, str):
        data["matching"]["threshold"] = resolve_threshold(threshold)

    return AppConfig(**{name: cls(**data[name]) for name, cls in _SECTIONS.items()})


def resolve_threshold(value: str | float) -> float:
    """Resolve a threshold preset name or numeric string to a float in [0, 1]."""
    if isinstance(value, str):
        preset = THRESHOLD_PRESETS.get(value.strip().lower())
        if preset is not None:
            return preset
        try:
            value = float(value)
        except ValueError as exc:
            supported = ", ".join(THRESHOLD_PRESETS)
            raise ValueError(f"Unknown threshold preset: {value}. Supported: {supported}") from exc
    return min(1.0, max(0.0, float(value)))


def get_api_key(cfg: ProviderConfig) -> str | None:
    """Get API key from inline config or environment variable."""
    if cfg.api_key:
        return cfg.api_key
    return os.getenv(cfg.api_key_env)
