"""
Speech Service

Single entry point for the grid UI: synthesize text with whichever
provider was selected and play it.
"""

from typing import Any, Dict, List, Optional

from .errors import ProviderNotAvailableError
from .playback import PlaybackEngine, PlaybackOptions, PlaybackSession
from .speech_client import SentenceResult
from .tts_providers.base import SynthesisResult, TTSProviderType
from .tts_providers.selector import TTSProviderSelector, get_selector

from utils.logger import logger


class SpeechService:
    """Ties provider selection to playback"""

    def __init__(
        self,
        selector: Optional[TTSProviderSelector] = None,
        playback: Optional[PlaybackEngine] = None,
    ):
        self.selector = selector or get_selector()
        self.playback = playback or PlaybackEngine()

    async def synthesize(self, text: str, **options) -> SynthesisResult:
        """Synthesize with the selected provider"""
        provider = await self.selector.get_provider()
        return await provider.synthesize(text, **options)

    async def speak(
        self,
        text: str,
        playback_options: Optional[PlaybackOptions] = None,
        **options,
    ) -> PlaybackSession:
        """Synthesize and play; returns once playback has finished"""
        result = await self.synthesize(text, **options)
        logger.debug(f"Speaking [{result.request_id}] via {result.provider}")
        return await self.playback.play(result, playback_options)

    async def build_sentence(self, words: List[str]) -> SentenceResult:
        """
        Ask the remote server to assemble a sentence from grid words.

        Raises:
            ProviderNotAvailableError: If the local fallback is in use
        """
        provider = await self.selector.get_provider()
        if provider.provider_type != TTSProviderType.REMOTE:
            raise ProviderNotAvailableError("Sentence building requires the remote server")
        return await provider.build_sentence(words)

    async def stop(self) -> None:
        await self.playback.stop()

    async def reset(self) -> None:
        """Stop playback and force a new provider selection on next use"""
        await self.playback.stop()
        await self.selector.reset()
        logger.info("Speech service reset")

    def get_status(self) -> Dict[str, Any]:
        provider = self.selector.active_provider
        return {
            "provider": provider.describe() if provider else None,
            "playing": self.playback.is_playing,
            "active_sessions": len(self.playback.active_sessions),
        }
