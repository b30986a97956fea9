"""
TTS Provider Base Classes

Abstract base class and data structures for speech providers.
All providers must implement this interface.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from config import settings
from ..errors import (
    ProviderNotAvailableError,
    ValidationError,
    extract_error_message,
)

from utils.logger import logger


MAX_TEXT_LENGTH = 5000
RATE_RANGE = (0.5, 2.0)
PITCH_RANGE = (0.5, 2.0)
VOLUME_RANGE = (0.0, 1.0)


class TTSProviderType(str, Enum):
    """Supported provider types"""
    REMOTE = "remote"   # AAC NLP server (Piper voice)
    LOCAL = "local"     # Platform speech API with placeholder audio


def clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


@dataclass(frozen=True)
class SynthesisRequest:
    """A validated synthesis request"""
    text: str
    voice: str = "default"
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0
    language: str = "ru-RU"

    @classmethod
    def validated(
        cls,
        text: str,
        voice: Optional[str] = None,
        rate: Optional[float] = None,
        pitch: Optional[float] = None,
        volume: Optional[float] = None,
        language: Optional[str] = None,
    ) -> "SynthesisRequest":
        """
        Build a request, rejecting bad text and clamping numeric fields.

        Raises:
            ValidationError: If text is blank or longer than 5000 characters
        """
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("Text cannot be empty")

        if len(text) > MAX_TEXT_LENGTH:
            raise ValidationError(f"Text too long (max {MAX_TEXT_LENGTH} characters)")

        return cls(
            text=text,
            voice=voice or "default",
            rate=clamp(1.0 if rate is None else rate, *RATE_RANGE),
            pitch=clamp(1.0 if pitch is None else pitch, *PITCH_RANGE),
            volume=clamp(1.0 if volume is None else volume, *VOLUME_RANGE),
            language=language or settings.DEFAULT_LANGUAGE,
        )

    @property
    def words(self) -> List[str]:
        return self.text.split()


@dataclass(frozen=True)
class SynthesisResult:
    """Result of synthesis; audio_bytes is never mutated by consumers"""
    request_id: str
    audio_bytes: bytes
    estimated_duration_seconds: float
    sample_rate: int
    channel_count: int = 1
    synthesis_time_ms: float = 0.0
    provider: str = ""


@dataclass
class VoiceDescriptor:
    """Voice information"""
    id: str
    display_name: str
    language: str
    gender: str                 # 'male', 'female', 'neutral'
    sample_rate: int = 22050
    model_size_bytes: int = 0
    quality: str = "medium"     # 'low', 'medium', 'high'
    is_loaded: bool = False


@dataclass
class TTSCapabilities:
    """Provider capabilities"""
    is_local: bool = False
    requires_network: bool = True
    produces_speech: bool = True
    max_text_length: int = MAX_TEXT_LENGTH
    sample_rate: int = 22050
    supported_languages: List[str] = field(default_factory=list)


@dataclass
class ProviderStatus:
    """Snapshot of a provider's runtime state"""
    initialized: bool
    active_requests: int = 0
    queued_requests: int = 0
    available_voices: List[str] = field(default_factory=list)
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialized": self.initialized,
            "active_requests": self.active_requests,
            "queued_requests": self.queued_requests,
            "available_voices": list(self.available_voices),
            "last_error": self.last_error,
        }


class TTSProvider(ABC):
    """
    Abstract base class for speech providers.

    Providers turn text into a SynthesisResult carrying WAV bytes.
    Playback is handled separately by the playback engine.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize provider with optional configuration.

        Args:
            config: Provider-specific configuration
        """
        self.config = config or {}
        self._initialized = False
        self._current_voice: Optional[str] = self.config.get("voice") or settings.DEFAULT_VOICE
        self._active_requests = 0
        self._queued_requests = 0
        self._last_error: Optional[str] = None

    @property
    @abstractmethod
    def provider_type(self) -> TTSProviderType:
        """Return the provider type"""
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable provider name"""
        pass

    @property
    @abstractmethod
    def capabilities(self) -> TTSCapabilities:
        """Return provider capabilities"""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """
        Initialize the provider.

        Raises:
            ProviderNotAvailableError: If the provider cannot be used
        """
        pass

    @abstractmethod
    async def synthesize(
        self,
        text: str,
        voice: Optional[str] = None,
        rate: Optional[float] = None,
        pitch: Optional[float] = None,
        volume: Optional[float] = None,
        language: Optional[str] = None,
    ) -> SynthesisResult:
        """
        Synthesize text to audio.

        Raises:
            ValidationError: If the request is malformed
            ProviderNotAvailableError: If the provider is not usable
        """
        pass

    @abstractmethod
    async def get_voices(self) -> List[VoiceDescriptor]:
        """Get available voices"""
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Release resources; the provider must be initialized again before use"""
        pass

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def current_voice(self) -> Optional[str]:
        return self._current_voice

    async def set_voice(self, voice_id: str) -> None:
        """
        Select a voice for subsequent requests.

        Raises:
            ValidationError: If the voice is not offered by this provider
        """
        voices = await self.get_voices()
        if not any(v.id == voice_id for v in voices):
            raise ValidationError(f"Voice not found: {voice_id}")

        self._current_voice = voice_id
        logger.info(f"Voice changed to: {voice_id}")

    def validate_request(
        self,
        text: str,
        voice: Optional[str] = None,
        rate: Optional[float] = None,
        pitch: Optional[float] = None,
        volume: Optional[float] = None,
        language: Optional[str] = None,
    ) -> SynthesisRequest:
        """Validate request fields, filling the voice from the current selection"""
        return SynthesisRequest.validated(
            text=text,
            voice=voice or self._current_voice,
            rate=rate,
            pitch=pitch,
            volume=volume,
            language=language,
        )

    def ensure_initialized(self) -> None:
        if not self._initialized:
            raise ProviderNotAvailableError(
                f"{self.display_name} not initialized. Call initialize() first."
            )

    def _record_error(self, error: BaseException) -> None:
        self._last_error = extract_error_message(error)

    @staticmethod
    def generate_request_id() -> str:
        return f"tts_{uuid.uuid4().hex[:12]}"

    def get_status(self) -> ProviderStatus:
        """Get provider runtime status"""
        return ProviderStatus(
            initialized=self._initialized,
            active_requests=self._active_requests,
            queued_requests=self._queued_requests,
            available_voices=[self._current_voice] if self._current_voice else [],
            last_error=self._last_error,
        )

    def describe(self) -> Dict[str, Any]:
        """Get provider description for health checks"""
        caps = self.capabilities
        return {
            "provider": self.provider_type.value,
            "name": self.display_name,
            "initialized": self._initialized,
            "capabilities": {
                "is_local": caps.is_local,
                "requires_network": caps.requires_network,
                "produces_speech": caps.produces_speech,
                "sample_rate": caps.sample_rate,
            },
            "status": self.get_status().to_dict(),
        }
