"""
Remote Speech Client

HTTP client for the AAC NLP/speech server:
- Health check (GET /health)
- Sentence assembly from grid words (POST /api/sentence)
- Speech generation from grid words (POST /api/speak, WAV bytes)

Every call is a single request with its own timeout, wrapped by the
resilience engine with one circuit per operation kind.
"""

from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaValidationError

from config import settings
from .errors import NetworkError, RemoteError, RequestTimeoutError, ValidationError
from .resilience import ResilienceEngine, RetryPolicy, get_resilience_engine
from .wav import estimate_wav_duration

from utils.logger import logger
from utils.metrics import PerformanceMonitor, get_performance_monitor


HEALTH_CIRCUIT = "remote.health"
SENTENCE_CIRCUIT = "remote.sentence"
SPEAK_CIRCUIT = "remote.speak"


class HealthStatus(BaseModel):
    """Response of GET /health"""
    status: str
    model: str = ""

    @property
    def is_healthy(self) -> bool:
        return self.status == "ok"


class SentenceResult(BaseModel):
    """Response of POST /api/sentence"""
    model_config = ConfigDict(populate_by_name=True)

    sentence: str
    original_words: List[str] = Field(default_factory=list, alias="originalWords")


class RemoteSpeechClient:
    """
    Client for the remote synthesis server.

    The base URL can be changed at runtime; requests always use the
    current value.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        health_timeout: Optional[float] = None,
        sentence_timeout: Optional[float] = None,
        speak_timeout: Optional[float] = None,
        engine: Optional[ResilienceEngine] = None,
        health_policy: Optional[RetryPolicy] = None,
        sentence_policy: Optional[RetryPolicy] = None,
        speak_policy: Optional[RetryPolicy] = None,
        sample_rate: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        monitor: Optional[PerformanceMonitor] = None,
    ):
        self._base_url = self._normalize_url(base_url or settings.SPEECH_SERVER_URL)
        self.health_timeout = settings.HEALTH_TIMEOUT if health_timeout is None else health_timeout
        self.sentence_timeout = settings.SENTENCE_TIMEOUT if sentence_timeout is None else sentence_timeout
        self.speak_timeout = settings.SPEAK_TIMEOUT if speak_timeout is None else speak_timeout
        self.sample_rate = settings.SPEECH_SAMPLE_RATE if sample_rate is None else sample_rate
        self.engine = engine or get_resilience_engine()
        self.monitor = monitor or get_performance_monitor()

        base_policy = self.engine.retry_policy
        self.health_policy = health_policy or RetryPolicy(
            max_attempts=settings.HEALTH_MAX_ATTEMPTS,
            base_delay=base_policy.base_delay,
            max_delay=base_policy.max_delay,
            backoff_multiplier=base_policy.backoff_multiplier,
        )
        self.sentence_policy = sentence_policy or RetryPolicy(
            max_attempts=settings.SENTENCE_MAX_ATTEMPTS,
            base_delay=settings.SENTENCE_BASE_DELAY,
            max_delay=base_policy.max_delay,
            backoff_multiplier=base_policy.backoff_multiplier,
        )
        self.speak_policy = speak_policy or RetryPolicy(
            max_attempts=settings.SPEAK_MAX_ATTEMPTS,
            base_delay=settings.SPEAK_BASE_DELAY,
            max_delay=base_policy.max_delay,
            backoff_multiplier=base_policy.backoff_multiplier,
        )

        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

        logger.info(f"Remote speech client initialized (server={self._base_url})")

    @staticmethod
    def _normalize_url(url: str) -> str:
        url = url.strip().rstrip("/")
        if not url.startswith(("http://", "https://")):
            raise ValidationError(f"Invalid server URL: {url!r}")
        return url

    @property
    def base_url(self) -> str:
        return self._base_url

    @base_url.setter
    def base_url(self, url: str) -> None:
        self._base_url = self._normalize_url(url)
        logger.info(f"Server URL updated: {self._base_url}")

    def set_base_url(self, url: str) -> None:
        """Point the client at another server without reconstructing it"""
        self.base_url = url

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(transport=self._transport)
        return self._http_client

    async def _request(
        self,
        method: str,
        path: str,
        timeout: float,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Issue one request and translate transport failures"""
        url = f"{self._base_url}{path}"
        try:
            response = await self._get_http_client().request(
                method, url, json=json_body, timeout=timeout
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"{method} {path} timed out after {timeout}s") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if not response.is_success:
            raise RemoteError(response.status_code)

        return response

    @staticmethod
    def _parse_json(response: httpx.Response, model: type) -> Any:
        try:
            return model.model_validate(response.json())
        except (ValueError, SchemaValidationError) as e:
            raise RemoteError(
                response.status_code, f"Malformed response from server: {e}"
            ) from e

    async def health_check(self) -> HealthStatus:
        """
        Check server health.

        Returns:
            HealthStatus with status ('ok' when healthy) and model name
        """
        self.monitor.mark("nlp-health-check-start")

        async def call() -> HealthStatus:
            response = await self._request("GET", "/health", self.health_timeout)
            return self._parse_json(response, HealthStatus)

        try:
            health = await self.engine.with_retry(
                call, policy=self.health_policy, circuit_key=HEALTH_CIRCUIT
            )
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            raise

        self.monitor.measure("nlp-health-check", "nlp-health-check-start")
        return health

    async def build_sentence(self, words: Sequence[str]) -> SentenceResult:
        """
        Build a grammatical sentence from grid words.

        Args:
            words: Words picked on the grid, in order

        Returns:
            SentenceResult with the sentence and the original words
        """
        word_list = self._validate_words(words)
        self.monitor.mark("nlp-sentence-start")

        async def call() -> SentenceResult:
            response = await self._request(
                "POST", "/api/sentence", self.sentence_timeout, {"words": word_list}
            )
            return self._parse_json(response, SentenceResult)

        try:
            result = await self.engine.with_retry(
                call, policy=self.sentence_policy, circuit_key=SENTENCE_CIRCUIT
            )
        except Exception as e:
            logger.error(f"Failed to build sentence: {e}")
            raise

        self.monitor.measure("nlp-sentence", "nlp-sentence-start")
        logger.info(f"Sentence built from {len(word_list)} words: {result.sentence}")
        return result

    async def generate_speech(self, words: Sequence[str]) -> bytes:
        """
        Generate speech for grid words.

        Returns:
            Raw WAV bytes (mono, 16-bit PCM, expected 44-byte header)
        """
        word_list = self._validate_words(words)
        self.monitor.mark("nlp-speech-start")

        async def call() -> bytes:
            response = await self._request(
                "POST", "/api/speak", self.speak_timeout, {"words": word_list}
            )
            return response.content

        try:
            audio = await self.engine.with_retry(
                call, policy=self.speak_policy, circuit_key=SPEAK_CIRCUIT
            )
        except Exception as e:
            logger.error(f"Failed to generate speech: {e}")
            raise

        self.monitor.measure("nlp-speech", "nlp-speech-start")
        logger.info(f"Speech generated for {len(word_list)} words ({len(audio)} bytes)")
        return audio

    def estimate_duration(self, audio: bytes) -> float:
        """Estimated duration in seconds (fixed 44-byte header, 16-bit mono)"""
        return estimate_wav_duration(audio, self.sample_rate)

    @staticmethod
    def _validate_words(words: Sequence[str]) -> List[str]:
        if isinstance(words, str):
            raise ValidationError("words must be a sequence of strings, not a string")
        word_list = [str(w) for w in words if str(w).strip()]
        if not word_list:
            raise ValidationError("At least one word is required")
        return word_list

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool"""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    async def __aenter__(self) -> "RemoteSpeechClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
