"""Configuration management using Pydantic settings"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Remote synthesis server
    SPEECH_SERVER_URL: str = "http://localhost:5000"

    # Request timeouts (seconds)
    HEALTH_TIMEOUT: float = 3.0
    SENTENCE_TIMEOUT: float = 5.0
    SPEAK_TIMEOUT: float = 30.0
    HEALTH_PROBE_TIMEOUT: float = 3.0

    # Retry defaults
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 10.0
    RETRY_BACKOFF_MULTIPLIER: float = 2.0

    # Per-operation attempts used by the remote client
    HEALTH_MAX_ATTEMPTS: int = 1
    SENTENCE_MAX_ATTEMPTS: int = 1
    SENTENCE_BASE_DELAY: float = 1.0
    SPEAK_MAX_ATTEMPTS: int = 2
    SPEAK_BASE_DELAY: float = 2.0

    # Circuit breaker
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_SUCCESS_THRESHOLD: int = 2
    CIRCUIT_COOLDOWN_TIMEOUT: float = 60.0

    # Audio
    SPEECH_SAMPLE_RATE: int = 22050
    DEFAULT_LANGUAGE: str = "ru-RU"
    DEFAULT_VOICE: Optional[str] = None

    # Diagnostics
    ERROR_HISTORY_SIZE: int = 100
    METRICS_HISTORY_SIZE: int = 200

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

    def default_retry_policy(self):
        """Build the engine-wide retry policy from settings"""
        from backend.resilience import RetryPolicy

        return RetryPolicy(
            max_attempts=self.RETRY_MAX_ATTEMPTS,
            base_delay=self.RETRY_BASE_DELAY,
            max_delay=self.RETRY_MAX_DELAY,
            backoff_multiplier=self.RETRY_BACKOFF_MULTIPLIER,
        )

    def default_circuit_config(self):
        """Build the engine-wide circuit breaker config from settings"""
        from backend.resilience import CircuitConfig

        return CircuitConfig(
            failure_threshold=self.CIRCUIT_FAILURE_THRESHOLD,
            success_threshold=self.CIRCUIT_SUCCESS_THRESHOLD,
            cooldown_timeout=self.CIRCUIT_COOLDOWN_TIMEOUT,
        )

    def get_server_info(self) -> dict:
        """Get remote server configuration for diagnostics"""
        return {
            "server_url": self.SPEECH_SERVER_URL,
            "timeouts": {
                "health": self.HEALTH_TIMEOUT,
                "sentence": self.SENTENCE_TIMEOUT,
                "speak": self.SPEAK_TIMEOUT,
            },
            "sample_rate": self.SPEECH_SAMPLE_RATE,
        }


# Global settings instance
settings = Settings()
