"""
TTS Provider Selector

Picks the provider used for the rest of the process: the remote server
when its health probe passes, otherwise the local fallback. The choice
is cached until reset() is called.
"""

import asyncio
from typing import Callable, List, Optional, Sequence

from .base import TTSProvider, TTSProviderType
from .local_provider import LocalTTSProvider
from .remote_provider import RemoteTTSProvider
from ..errors import ProviderNotAvailableError

from utils.logger import logger


ProviderFactory = Callable[[], TTSProvider]


async def select_provider(factories: Sequence[ProviderFactory]) -> TTSProvider:
    """
    Initialize candidates in order and return the first that succeeds.

    A candidate that fails to initialize is cleaned up and skipped;
    the failure is logged, not raised.

    Raises:
        ProviderNotAvailableError: If every candidate failed
    """
    last_error: Optional[BaseException] = None

    for factory in factories:
        provider = factory()
        try:
            await provider.initialize()
        except Exception as e:
            last_error = e
            logger.warning(f"{provider.display_name} unavailable, trying next provider: {e}")
            await _discard(provider)
            continue

        logger.info(f"TTS provider selected: {provider.display_name}")
        return provider

    raise ProviderNotAvailableError("No TTS providers available") from last_error


async def _discard(provider: TTSProvider) -> None:
    try:
        await provider.cleanup()
    except Exception as e:
        logger.debug(f"Cleanup of discarded provider failed: {e}")


class TTSProviderSelector:
    """
    Caches the selected provider for the lifetime of the process.

    Selection happens once; it is not re-evaluated when the remote server
    recovers. Call reset() to force a new selection on next access.
    """

    def __init__(
        self,
        remote_factory: Optional[ProviderFactory] = None,
        local_factory: Optional[ProviderFactory] = None,
    ):
        self._remote_factory = remote_factory or RemoteTTSProvider
        self._local_factory = local_factory or LocalTTSProvider
        self._provider: Optional[TTSProvider] = None
        self._lock = asyncio.Lock()

    @property
    def active_provider(self) -> Optional[TTSProvider]:
        """The cached provider, or None before the first selection"""
        return self._provider

    @property
    def active_type(self) -> Optional[TTSProviderType]:
        return self._provider.provider_type if self._provider else None

    def candidates(self) -> List[ProviderFactory]:
        return [self._remote_factory, self._local_factory]

    async def get_provider(self) -> TTSProvider:
        """Get the selected provider, selecting on first use"""
        if self._provider is not None:
            return self._provider

        async with self._lock:
            if self._provider is None:
                logger.info("Creating TTS provider instance...")
                self._provider = await select_provider(self.candidates())

        return self._provider

    async def reset(self) -> None:
        """Clean up the cached provider and forget it"""
        async with self._lock:
            provider, self._provider = self._provider, None

        if provider is not None:
            await provider.cleanup()
            logger.info(f"TTS provider reset ({provider.display_name} released)")


# Application-wide selector
_selector: Optional[TTSProviderSelector] = None


def get_selector() -> TTSProviderSelector:
    """Get or create the application selector"""
    global _selector
    if _selector is None:
        _selector = TTSProviderSelector()
    return _selector


async def reset_selector() -> None:
    """Reset the application selector and drop it"""
    global _selector
    if _selector is not None:
        await _selector.reset()
    _selector = None
