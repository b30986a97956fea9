"""
TTS Providers Package

Two providers behind one interface:
- Remote (AAC NLP server, Piper voice) - preferred when its health probe passes
- Local (platform speech API) - offline fallback producing placeholder audio

Provider Selection:
- The selector probes the remote server once and caches the winner
- A recovered server is only picked up after reset()
"""

from .base import (
    TTSProvider,
    TTSProviderType,
    SynthesisRequest,
    SynthesisResult,
    TTSCapabilities,
    VoiceDescriptor,
    ProviderStatus,
)
from .remote_provider import RemoteTTSProvider
from .local_provider import LocalTTSProvider
from .selector import (
    TTSProviderSelector,
    select_provider,
    get_selector,
    reset_selector,
)
from ..wav import encode_wav, read_wav_header, estimate_wav_duration
from ..errors import ProviderNotAvailableError, ProviderConfigError

__all__ = [
    # Base classes
    "TTSProvider",
    "TTSProviderType",
    "SynthesisRequest",
    "SynthesisResult",
    "TTSCapabilities",
    "VoiceDescriptor",
    "ProviderStatus",
    "ProviderNotAvailableError",
    "ProviderConfigError",
    # Providers
    "RemoteTTSProvider",
    "LocalTTSProvider",
    # Selection
    "TTSProviderSelector",
    "select_provider",
    "get_selector",
    "reset_selector",
    # WAV helpers
    "encode_wav",
    "read_wav_header",
    "estimate_wav_duration",
]
