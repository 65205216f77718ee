# Copyright (c) 2026 Heureum AI. All rights reserved.

"""
Application configuration using pydantic-settings.
"""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings.

    All durations are in seconds.

    Attributes:
        APP_NAME (str): Display name of the application.
        DEBUG (bool): Whether to enable debug mode.
        OPENAI_API_KEY (str): OpenAI API key for LLM calls.
        OPENAI_BASE_URL (str): Optional OpenAI-compatible endpoint for
            non-OpenAI model ids (Groq, Cohere, ...).
        GOOGLE_API_KEY (str): Google AI Studio key for Gemini models.
        CORS_ORIGINS (str): Comma-separated list of allowed CORS origins.
        DEFAULT_TEMPERATURE (float): Sampling temperature when a request
            does not specify one.
        DEFAULT_MAX_TOKENS (int): Response token cap when a request does not
            specify one.
        MAX_LLM_RETRIES (int): Retries for transient backend errors.
        LLM_RETRY_BASE_DELAY (float): First retry delay, doubled per retry.
        TOKEN_COUNTER (str): ``"heuristic"`` or ``"tiktoken"``.
        SUMMARIZATION_STRATEGY (str): Default context summarization strategy.
        RESPONSE_CACHE_TTL (float): TTL of cached full responses.
        RESPONSE_CACHE_MAX_SIZE (int): Capacity of the response cache.
        CONTEXT_CACHE_TTL (float): TTL of conversation contexts.
        CONTEXT_CACHE_MAX_SIZE (int): Maximum number of live conversations.
        RATE_LIMIT_CACHE_MAX_SIZE (int): Capacity of the counter store.
        FAST_CACHE_TTL (float): TTL of the aggressive fast-path cache.
        FAST_CACHE_MAX_SIZE (int): Capacity of the aggressive fast-path cache.
        PRECOMPUTED_CACHE_TTL (float): TTL of prewarmed canned answers.
        CACHE_CLEANUP_INTERVAL (float): Period of background cache sweeps.
        GLOBAL_RATE_LIMIT_CAPACITY (int): Global token bucket capacity.
        GLOBAL_RATE_LIMIT_INTERVAL (float): Seconds to refill the full bucket.
        FAST_RESPONSE_TARGET (float): Deadline of the fast response path.
        INSTANT_MATCH_MAX_CHARS (int): Longest message eligible for canned
            instant replies.
        STREAM_MAX_LATENCY (float): First-token latency target.
        STREAM_BUFFER_SIZE (int): Tokens buffered before a chunk is flushed.
        STREAM_INSTANT_WORD_DELAY (float): Delay between words of a locally
            synthesized stream.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    APP_NAME: str = "Chat Runtime"
    DEBUG: bool = False
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = ""

    # Google Gemini
    GOOGLE_API_KEY: str = ""

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Generation defaults
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_MAX_TOKENS: int = 2048

    # LLM retry (transient / retryable errors)
    MAX_LLM_RETRIES: int = 2
    LLM_RETRY_BASE_DELAY: float = 1.0  # seconds, doubles each retry

    # Context
    TOKEN_COUNTER: str = "heuristic"
    SUMMARIZATION_STRATEGY: str = "balanced"

    # Caches
    RESPONSE_CACHE_TTL: float = 600.0  # 10 minutes
    RESPONSE_CACHE_MAX_SIZE: int = 500
    CONTEXT_CACHE_TTL: float = 1800.0  # 30 minutes
    CONTEXT_CACHE_MAX_SIZE: int = 200
    RATE_LIMIT_CACHE_MAX_SIZE: int = 5000
    FAST_CACHE_TTL: float = 120.0
    FAST_CACHE_MAX_SIZE: int = 2000
    PRECOMPUTED_CACHE_TTL: float = 600.0
    CACHE_CLEANUP_INTERVAL: float = 60.0

    # Rate limiting
    GLOBAL_RATE_LIMIT_CAPACITY: int = 10
    GLOBAL_RATE_LIMIT_INTERVAL: float = 60.0

    # Latency targets
    FAST_RESPONSE_TARGET: float = 3.0
    INSTANT_MATCH_MAX_CHARS: int = 40
    STREAM_MAX_LATENCY: float = 0.5
    STREAM_BUFFER_SIZE: int = 3
    STREAM_INSTANT_WORD_DELAY: float = 0.1

    def get_cors_origins(self) -> List[str]:
        """Parse CORS origins as list.

        Returns:
            List[str]: A list of origin URL strings split from the
                comma-separated CORS_ORIGINS setting.
        """
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]


settings = Settings()
