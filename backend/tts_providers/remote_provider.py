"""
Remote TTS Provider

Speech from the AAC NLP server. The server inflects the grid words and
voices them with a Piper model, returning a WAV file.
"""

import asyncio
from typing import Any, Dict, List, Optional

from config import settings
from .base import (
    ProviderStatus,
    SynthesisResult,
    TTSCapabilities,
    TTSProvider,
    TTSProviderType,
    VoiceDescriptor,
)
from ..errors import ProviderNotAvailableError, RequestTimeoutError
from ..speech_client import RemoteSpeechClient, SentenceResult

from utils.logger import logger
from utils.metrics import PerformanceMonitor, get_performance_monitor


SERVER_VOICE_ID = "ru_RU-irina-medium"


class RemoteTTSProvider(TTSProvider):
    """
    Provider backed by the remote synthesis server.

    Usable only after a health probe reported 'ok'. Selection does not
    re-probe later; a recovered server is picked up after a selector reset.
    """

    def __init__(
        self,
        client: Optional[RemoteSpeechClient] = None,
        config: Optional[Dict[str, Any]] = None,
        monitor: Optional[PerformanceMonitor] = None,
    ):
        super().__init__(config)
        self.client = client or RemoteSpeechClient()
        self.monitor = monitor or get_performance_monitor()
        self.probe_timeout = self.config.get("probe_timeout", settings.HEALTH_PROBE_TIMEOUT)
        self.sample_rate = self.config.get("sample_rate", settings.SPEECH_SAMPLE_RATE)
        self._server_available = False
        self._model_name = ""

    @property
    def provider_type(self) -> TTSProviderType:
        return TTSProviderType.REMOTE

    @property
    def display_name(self) -> str:
        return "AAC NLP Server"

    @property
    def capabilities(self) -> TTSCapabilities:
        return TTSCapabilities(
            is_local=False,
            requires_network=True,
            produces_speech=True,
            sample_rate=self.sample_rate,
            supported_languages=["ru-RU"],
        )

    @property
    def server_available(self) -> bool:
        return self._server_available

    async def initialize(self) -> None:
        """Probe server health, bounded by the probe timeout"""
        self.monitor.mark("server-tts-init-start")

        try:
            health = await asyncio.wait_for(self.client.health_check(), timeout=self.probe_timeout)
        except asyncio.TimeoutError as e:
            self._server_available = False
            self._record_error(e)
            logger.error(f"Failed to initialize Server TTS: health check timeout ({self.probe_timeout}s)")
            raise RequestTimeoutError("Health check timeout") from e
        except Exception as e:
            self._server_available = False
            self._record_error(e)
            logger.error(f"Failed to initialize Server TTS: {e}")
            raise

        self._server_available = health.is_healthy
        self._model_name = health.model
        self.monitor.measure("server-tts-init", "server-tts-init-start")

        if not self._server_available:
            self._initialized = False
            raise ProviderNotAvailableError(f"Server reported status {health.status!r}")

        self._initialized = True
        logger.info(f"Server TTS initialized (model={health.model})")

    async def synthesize(
        self,
        text: str,
        voice: Optional[str] = None,
        rate: Optional[float] = None,
        pitch: Optional[float] = None,
        volume: Optional[float] = None,
        language: Optional[str] = None,
    ) -> SynthesisResult:
        """Synthesize via the server; the text is sent as whitespace-split words"""
        request = self.validate_request(text, voice, rate, pitch, volume, language)
        self.ensure_initialized()

        if not self._server_available:
            raise ProviderNotAvailableError("Server is not available")

        request_id = self.generate_request_id()
        start_mark = f"server-tts-synth-{request_id}"
        self.monitor.mark(start_mark)
        self._active_requests += 1

        try:
            logger.debug(f"Synthesizing via server [{request_id}]: {request.text!r}")
            audio = await self.client.generate_speech(request.words)
            synthesis_time = self.monitor.measure(start_mark, start_mark)

            result = SynthesisResult(
                request_id=request_id,
                audio_bytes=bytes(audio),
                estimated_duration_seconds=self.client.estimate_duration(audio),
                sample_rate=self.sample_rate,
                channel_count=1,
                synthesis_time_ms=synthesis_time,
                provider=self.provider_type.value,
            )

            logger.info(
                f"Server synthesis completed [{request_id}]: "
                f"{result.estimated_duration_seconds:.2f}s audio in {synthesis_time:.0f}ms"
            )
            return result

        except Exception as e:
            self._record_error(e)
            logger.error(f"Server synthesis failed: {e}")
            raise
        finally:
            self._active_requests -= 1
            self.monitor.clear_mark(start_mark)

    async def build_sentence(self, words: List[str]) -> SentenceResult:
        """Let the server assemble a sentence from grid words"""
        self.ensure_initialized()
        return await self.client.build_sentence(words)

    async def get_voices(self) -> List[VoiceDescriptor]:
        return [
            VoiceDescriptor(
                id=SERVER_VOICE_ID,
                display_name="Ирина (средний)",
                language="ru-RU",
                gender="female",
                sample_rate=self.sample_rate,
                model_size_bytes=28 * 1024 * 1024,
                quality="medium",
                is_loaded=self._server_available,
            )
        ]

    def get_status(self) -> ProviderStatus:
        status = super().get_status()
        status.available_voices = [SERVER_VOICE_ID]
        return status

    async def cleanup(self) -> None:
        self._initialized = False
        self._server_available = False
        await self.client.aclose()
        logger.info("Server TTS cleaned up")
