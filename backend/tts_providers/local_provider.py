"""
Local TTS Provider

Offline fallback used when the remote server cannot be reached.

Requires the platform speech API (pyttsx3: SAPI5, NSSpeechSynthesizer
or eSpeak). pyttsx3 speaks straight to the device and does not hand back
audio, so synthesize() returns a placeholder tone encoded as WAV. That
keeps the playback pipeline fed with a well-formed result even without
a real voice model.
"""

from typing import Any, Callable, Dict, List, Optional

from config import settings
from .base import (
    ProviderStatus,
    SynthesisResult,
    TTSCapabilities,
    TTSProvider,
    TTSProviderType,
    VoiceDescriptor,
)
from ..wav import encode_wav, generate_tone
from ..errors import ProviderNotAvailableError

from utils.logger import logger
from utils.metrics import PerformanceMonitor, get_performance_monitor


WORDS_PER_MINUTE = 150
TONE_FREQUENCY = 440.0   # A4
TONE_AMPLITUDE = 0.3


def _default_engine_factory() -> Any:
    import pyttsx3

    return pyttsx3.init()


def guess_gender(name: str) -> str:
    """Guess voice gender from its display name"""
    lower_name = name.lower()

    if any(token in lower_name for token in ("female", "woman", "zira", "samantha", "irina")):
        return "female"
    if any(token in lower_name for token in ("male", "man", "david", "alex")):
        return "male"
    return "neutral"


def estimate_speech_duration(text: str) -> float:
    """Rough spoken duration in seconds at ~150 words per minute"""
    word_count = len(text.split())
    return word_count * 60 / WORDS_PER_MINUTE


class LocalTTSProvider(TTSProvider):
    """
    Local fallback provider.

    Never fails on reachability grounds once initialized.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        engine_factory: Optional[Callable[[], Any]] = None,
        monitor: Optional[PerformanceMonitor] = None,
    ):
        super().__init__(config)
        self._engine_factory = engine_factory or _default_engine_factory
        self.monitor = monitor or get_performance_monitor()
        self.sample_rate = self.config.get("sample_rate", settings.SPEECH_SAMPLE_RATE)
        self._engine: Any = None
        self._voices: List[VoiceDescriptor] = []

    @property
    def provider_type(self) -> TTSProviderType:
        return TTSProviderType.LOCAL

    @property
    def display_name(self) -> str:
        return "Local speech (fallback)"

    @property
    def capabilities(self) -> TTSCapabilities:
        return TTSCapabilities(
            is_local=True,
            requires_network=False,
            produces_speech=False,  # placeholder tone only
            sample_rate=self.sample_rate,
        )

    async def initialize(self) -> None:
        """Initialize the platform speech API and load its voices"""
        self.monitor.mark("tts-init-start")

        try:
            self._engine = self._engine_factory()
        except Exception as e:
            self._initialized = False
            self._record_error(e)
            logger.error(f"Failed to initialize local TTS: {e}")
            raise ProviderNotAvailableError(f"Platform speech API not available: {e}") from e

        if self._engine is None:
            raise ProviderNotAvailableError("Platform speech API not available")

        self._load_voices()
        self._initialized = True

        self.monitor.measure("tts-init", "tts-init-start")
        logger.info(f"Local TTS initialized ({len(self._voices)} voices)")

    def _load_voices(self) -> None:
        try:
            raw_voices = self._engine.getProperty("voices") or []
        except Exception as e:
            logger.warning(f"Could not enumerate platform voices: {e}")
            raw_voices = []

        voices = []
        for index, voice in enumerate(raw_voices):
            name = getattr(voice, "name", None) or f"Voice {index}"
            voices.append(VoiceDescriptor(
                id=f"local_{index}",
                display_name=name,
                language=self._voice_language(voice),
                gender=guess_gender(name),
                sample_rate=self.sample_rate,
                model_size_bytes=0,
                quality="medium",
                is_loaded=True,
            ))
        self._voices = voices

        # Prefer an English voice as the default
        if self._current_voice is None and self._voices:
            english = next((v for v in self._voices if v.language.startswith("en")), None)
            self._current_voice = (english or self._voices[0]).id

    @staticmethod
    def _voice_language(voice: Any) -> str:
        languages = getattr(voice, "languages", None) or []
        if not languages:
            return ""
        language = languages[0]
        if isinstance(language, bytes):
            language = language.decode("utf-8", errors="ignore")
        return str(language).strip("\x00\x05 ")

    async def synthesize(
        self,
        text: str,
        voice: Optional[str] = None,
        rate: Optional[float] = None,
        pitch: Optional[float] = None,
        volume: Optional[float] = None,
        language: Optional[str] = None,
    ) -> SynthesisResult:
        """Produce a placeholder tone whose length follows the text"""
        request = self.validate_request(text, voice, rate, pitch, volume, language)
        self.ensure_initialized()

        request_id = self.generate_request_id()
        start_mark = f"tts-synthesis-start-{request_id}"
        self.monitor.mark(start_mark)
        self._active_requests += 1

        try:
            logger.debug(
                f"Synthesizing text [{request_id}]: {len(request.text)} chars, voice={request.voice}"
            )
            duration = estimate_speech_duration(request.text)
            samples = generate_tone(
                duration, self.sample_rate, frequency=TONE_FREQUENCY, amplitude=TONE_AMPLITUDE
            )
            audio = encode_wav(samples, self.sample_rate)
            synthesis_time = self.monitor.measure(f"tts-synthesis-{request_id}", start_mark)

            result = SynthesisResult(
                request_id=request_id,
                audio_bytes=audio,
                estimated_duration_seconds=duration,
                sample_rate=self.sample_rate,
                channel_count=1,
                synthesis_time_ms=synthesis_time,
                provider=self.provider_type.value,
            )

            logger.info(f"Synthesis completed [{request_id}]: {duration:.2f}s placeholder audio")
            return result

        except Exception as e:
            self._record_error(e)
            logger.error(f"Synthesis failed: {e}")
            raise
        finally:
            self._active_requests -= 1
            self.monitor.clear_mark(start_mark)

    async def get_voices(self) -> List[VoiceDescriptor]:
        self.ensure_initialized()
        if not self._voices:
            self._load_voices()
        return list(self._voices)

    def get_status(self) -> ProviderStatus:
        status = super().get_status()
        status.available_voices = [v.id for v in self._voices]
        return status

    async def cleanup(self) -> None:
        if self._engine is not None:
            try:
                self._engine.stop()
            except Exception as e:
                logger.debug(f"Ignoring error while stopping speech engine: {e}")
            self._engine = None

        self._initialized = False
        self._voices = []
        logger.info("Local TTS cleaned up")
