"""
Playback Engine

Decodes synthesis results and plays them on a shared audio output.

Each play() call is a session moving through
IDLE -> DECODING -> PLAYING -> ENDED | FAILED. stop() is a coarse global
stop: it closes the shared output and ends every running session.

The default output uses sounddevice (PortAudio) for the stream and
soundfile for decoding. Both are imported lazily so the rest of the
pipeline works on machines without an audio device.
"""

import asyncio
import io
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from .errors import DecodeError, ErrorHandler, ErrorSeverity, PlaybackError
from .tts_providers.base import SynthesisResult, clamp

from utils.logger import logger
from utils.metrics import PerformanceMonitor, get_performance_monitor


class PlaybackState(str, Enum):
    """Playback session states"""
    IDLE = "idle"
    DECODING = "decoding"
    PLAYING = "playing"
    ENDED = "ended"
    FAILED = "failed"


class OutputState(str, Enum):
    """State of the shared audio output"""
    RUNNING = "running"
    SUSPENDED = "suspended"
    CLOSED = "closed"


@dataclass
class PlaybackOptions:
    """Per-session playback options"""
    volume: float = 1.0
    loop: bool = False
    on_end: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None


@dataclass
class DecodedAudio:
    """PCM frames ready for output, float32 shaped (frames, channels)"""
    frames: np.ndarray
    sample_rate: int

    @property
    def channels(self) -> int:
        return self.frames.shape[1] if self.frames.ndim > 1 else 1

    @property
    def duration_seconds(self) -> float:
        return len(self.frames) / self.sample_rate if self.sample_rate else 0.0


@dataclass
class PlaybackSession:
    """One decode-and-play lifecycle"""
    session_id: str
    request_id: str
    state: PlaybackState = PlaybackState.IDLE
    error: Optional[Exception] = None
    _voice: Optional["OutputVoice"] = field(default=None, repr=False)
    _done: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def is_active(self) -> bool:
        return self.state in (PlaybackState.DECODING, PlaybackState.PLAYING)


class OutputVoice(ABC):
    """A source -> gain -> destination chain for one session"""

    @abstractmethod
    def start(self) -> None:
        """Start producing audio"""

    @abstractmethod
    def disconnect(self) -> None:
        """Release the chain; safe to call more than once"""


class AudioOutput(ABC):
    """
    Shared output context.

    Implementations must invoke the on_ended/on_error callbacks of a
    voice on the event loop thread.
    """

    state: OutputState = OutputState.RUNNING

    @abstractmethod
    async def resume(self) -> None:
        """Resume a suspended output"""

    @abstractmethod
    async def decode(self, data: bytearray) -> DecodedAudio:
        """
        Decode an encoded audio buffer. May consume or alter `data`.

        Raises:
            DecodeError: If the buffer is not decodable audio
        """

    @abstractmethod
    def create_voice(
        self,
        audio: DecodedAudio,
        gain: float,
        loop: bool,
        on_ended: Callable[[], None],
        on_error: Callable[[Exception], None],
    ) -> OutputVoice:
        """Build the output chain for decoded audio"""

    @abstractmethod
    async def close(self) -> None:
        """Close the output and every voice on it"""


class SoundDeviceVoice(OutputVoice):
    """Plays decoded frames through a PortAudio output stream"""

    def __init__(
        self,
        sd: Any,
        audio: DecodedAudio,
        gain: float,
        loop: bool,
        event_loop: asyncio.AbstractEventLoop,
        on_ended: Callable[[], None],
        on_error: Callable[[Exception], None],
        on_release: Callable[["SoundDeviceVoice"], None],
    ):
        self._sd = sd
        self._frames = audio.frames
        self._sample_rate = audio.sample_rate
        self._channels = audio.channels
        self._gain = np.float32(gain)
        self._loop = loop
        self._event_loop = event_loop
        self._on_ended = on_ended
        self._on_error = on_error
        self._on_release = on_release
        self._position = 0
        self._stream = None
        self._error: Optional[Exception] = None
        self._released = False

    def start(self) -> None:
        self._stream = self._sd.OutputStream(
            samplerate=self._sample_rate,
            channels=self._channels,
            dtype="float32",
            callback=self._callback,
            finished_callback=self._finished,
        )
        self._stream.start()

    def _next_chunk(self, frames: int) -> np.ndarray:
        total = len(self._frames)
        if not self._loop:
            chunk = self._frames[self._position:self._position + frames]
            self._position += len(chunk)
            return chunk

        # Looping wraps around until stopped
        pieces = []
        remaining = frames
        while remaining > 0 and total > 0:
            piece = self._frames[self._position:self._position + remaining]
            pieces.append(piece)
            remaining -= len(piece)
            self._position = (self._position + len(piece)) % total
        return np.concatenate(pieces) if pieces else self._frames[:0]

    def _callback(self, outdata, frames, time_info, status) -> None:
        # Runs on the PortAudio thread
        try:
            chunk = self._next_chunk(frames)
            outdata[:len(chunk)] = chunk * self._gain
            if len(chunk) < frames:
                outdata[len(chunk):] = 0
                raise self._sd.CallbackStop
        except self._sd.CallbackStop:
            raise
        except Exception as e:
            self._error = e
            raise self._sd.CallbackAbort

    def _finished(self) -> None:
        # Runs on the PortAudio thread
        if self._released:
            return
        if self._error is not None:
            error = PlaybackError(f"Audio stream error: {self._error}")
            self._notify(self._on_error, error)
        else:
            self._notify(self._on_ended)

    def _notify(self, callback: Callable, *args) -> None:
        try:
            self._event_loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            logger.debug("Event loop closed before playback callback")

    def abort(self) -> None:
        self._released = True
        if self._stream is not None:
            try:
                self._stream.abort()
            except Exception as e:
                logger.debug(f"Ignoring stream abort error: {e}")
        self.disconnect()

    def disconnect(self) -> None:
        self._released = True
        if self._stream is not None:
            stream, self._stream = self._stream, None
            try:
                stream.close()
            except Exception as e:
                logger.debug(f"Ignoring stream close error: {e}")
        self._on_release(self)


class SoundDeviceOutput(AudioOutput):
    """Default output: soundfile decoding, sounddevice streams"""

    def __init__(self):
        try:
            import sounddevice as sd
            import soundfile as sf
        except (ImportError, OSError) as e:
            raise PlaybackError(f"Audio output not available: {e}") from e

        self._sd = sd
        self._sf = sf
        self._event_loop = asyncio.get_running_loop()
        self._voices: List[SoundDeviceVoice] = []
        self.state = OutputState.RUNNING

    async def resume(self) -> None:
        if self.state == OutputState.SUSPENDED:
            self.state = OutputState.RUNNING
            logger.debug("Audio output resumed")

    async def decode(self, data: bytearray) -> DecodedAudio:
        return await self._event_loop.run_in_executor(None, self._decode_sync, data)

    def _decode_sync(self, data: bytearray) -> DecodedAudio:
        try:
            frames, sample_rate = self._sf.read(
                io.BytesIO(data), dtype="float32", always_2d=True
            )
        except Exception as e:
            raise DecodeError(f"Unable to decode audio data: {e}") from e

        if len(frames) == 0:
            raise DecodeError("Decoded audio contains no frames")
        return DecodedAudio(frames=frames, sample_rate=int(sample_rate))

    def create_voice(self, audio, gain, loop, on_ended, on_error) -> OutputVoice:
        voice = SoundDeviceVoice(
            self._sd, audio, gain, loop, self._event_loop,
            on_ended, on_error, self._release,
        )
        self._voices.append(voice)
        return voice

    def _release(self, voice: SoundDeviceVoice) -> None:
        if voice in self._voices:
            self._voices.remove(voice)

    async def close(self) -> None:
        for voice in list(self._voices):
            voice.abort()
        self._voices.clear()
        self.state = OutputState.CLOSED
        logger.debug("Audio output closed")


class PlaybackEngine:
    """
    Plays synthesis results on one shared, lazily created output.

    Starting a session does not stop sessions already playing; call
    stop() first when playback must be exclusive.
    """

    def __init__(
        self,
        output_factory: Optional[Callable[[], AudioOutput]] = None,
        error_handler: Optional[ErrorHandler] = None,
        monitor: Optional[PerformanceMonitor] = None,
    ):
        self._output_factory = output_factory or SoundDeviceOutput
        self.error_handler = error_handler or ErrorHandler()
        self.monitor = monitor or get_performance_monitor()
        self._output: Optional[AudioOutput] = None
        self._sessions: Dict[str, PlaybackSession] = {}
        self._counter = itertools.count(1)

    @property
    def output(self) -> Optional[AudioOutput]:
        return self._output

    @property
    def active_sessions(self) -> List[PlaybackSession]:
        return [s for s in self._sessions.values() if s.is_active]

    @property
    def is_playing(self) -> bool:
        return any(s.state == PlaybackState.PLAYING for s in self._sessions.values())

    async def _get_output(self) -> AudioOutput:
        if self._output is None or self._output.state == OutputState.CLOSED:
            self._output = self._output_factory()
        if self._output.state == OutputState.SUSPENDED:
            await self._output.resume()
        return self._output

    async def play(
        self,
        result: SynthesisResult,
        options: Optional[PlaybackOptions] = None,
    ) -> PlaybackSession:
        """
        Decode and play a synthesis result; returns when playback finishes.

        Raises:
            DecodeError: If the audio cannot be decoded
            PlaybackError: If the output fails to start or errors mid-stream
        """
        options = options or PlaybackOptions()
        session = PlaybackSession(
            session_id=f"play_{next(self._counter)}",
            request_id=result.request_id,
        )
        self._sessions[session.session_id] = session
        start_mark = f"tts-playback-start-{session.session_id}"
        self.monitor.mark(start_mark)

        try:
            try:
                output = await self._get_output()
            except PlaybackError as e:
                self._fail(session, e, options)
                raise
            except Exception as e:
                error = PlaybackError(f"Unable to open audio output: {e}")
                self._fail(session, error, options)
                raise error from e

            session.state = PlaybackState.DECODING
            try:
                # Decoding may consume its input, never hand over the caller's buffer
                audio = await output.decode(bytearray(result.audio_bytes))
            except DecodeError as e:
                self._fail(session, e, options)
                raise
            except Exception as e:
                error = DecodeError(f"Unable to decode audio data: {e}")
                self._fail(session, error, options)
                raise error from e

            if session.state != PlaybackState.DECODING:
                # stop() was called while decoding
                return session

            error = await self._run_voice(session, output, audio, options)
            if error is not None:
                self._fail(session, error, options)
                raise error

            if session.state == PlaybackState.PLAYING:
                session.state = PlaybackState.ENDED
                self.monitor.measure("tts-playback", start_mark)
                if options.on_end is not None:
                    options.on_end()

            return session

        finally:
            self._sessions.pop(session.session_id, None)
            self.monitor.clear_mark(start_mark)

    async def _run_voice(
        self,
        session: PlaybackSession,
        output: AudioOutput,
        audio: DecodedAudio,
        options: PlaybackOptions,
    ) -> Optional[Exception]:
        """Start the voice and wait for its end; returns the error, if any"""
        done = asyncio.get_running_loop().create_future()
        session._done = done

        def settle(error: Optional[Exception] = None) -> None:
            if not done.done():
                done.set_result(error)

        try:
            voice = output.create_voice(
                audio,
                gain=clamp(options.volume, 0.0, 1.0),
                loop=options.loop,
                on_ended=settle,
                on_error=settle,
            )
        except Exception as e:
            return e if isinstance(e, PlaybackError) else PlaybackError(str(e))

        session._voice = voice
        session.state = PlaybackState.PLAYING
        logger.debug(
            f"Playback started [{session.session_id}]: "
            f"{audio.duration_seconds:.2f}s, volume={options.volume}, loop={options.loop}"
        )

        try:
            voice.start()
        except Exception as e:
            settle(e if isinstance(e, PlaybackError) else PlaybackError(f"Failed to start playback: {e}"))

        try:
            return await done
        finally:
            voice.disconnect()
            session._voice = None

    def _fail(self, session: PlaybackSession, error: Exception, options: PlaybackOptions) -> None:
        session.state = PlaybackState.FAILED
        session.error = error
        self.error_handler.handle_error(
            error,
            context="PlaybackEngine.play",
            severity=ErrorSeverity.MEDIUM,
            metadata={"session_id": session.session_id, "request_id": session.request_id},
        )
        if options.on_error is not None:
            options.on_error(error)

    async def stop(self) -> None:
        """Close the shared output and end every running session"""
        for session in list(self._sessions.values()):
            if not session.is_active:
                continue
            session.state = PlaybackState.ENDED
            if session._voice is not None:
                session._voice.disconnect()
            if session._done is not None and not session._done.done():
                session._done.set_result(None)

        if self._output is not None:
            output, self._output = self._output, None
            await output.close()
            logger.info("Playback stopped")
