#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
import asyncio
import sys
import os
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import numpy as np

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.errors import DecodeError, ErrorHandler
from backend.playback import AudioOutput, DecodedAudio, OutputState, OutputVoice
from backend.resilience import ResilienceEngine, reset_resilience_engine
from backend.speech_client import RemoteSpeechClient
from backend.wav import encode_wav, generate_tone, read_wav_header
from utils.metrics import PerformanceMonitor


# ============================================================================
# ASYNCIO CONFIGURATION
# ============================================================================
# Note: pytest-asyncio is configured with asyncio_mode = "auto" in pyproject.toml
# The event loop is automatically managed per-function by default


@pytest.fixture(autouse=True)
def fresh_resilience_engine():
    """Never leak the application engine between tests"""
    reset_resilience_engine()
    yield
    reset_resilience_engine()


# ============================================================================
# TIME FIXTURES
# ============================================================================

class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Drop-in for asyncio.sleep that records delays and returns at once"""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def error_handler():
    return ErrorHandler(max_history=100)


@pytest.fixture
def engine(clock, sleeps, error_handler):
    """Resilience engine with default thresholds and no real waiting"""
    return ResilienceEngine(error_handler=error_handler, clock=clock, sleep=sleeps)


@pytest.fixture
def monitor():
    return PerformanceMonitor()


# ============================================================================
# REMOTE SERVER FIXTURES
# ============================================================================

class FakeSpeechServer:
    """
    httpx.MockTransport handler emulating the NLP server.

    Set `health`, `sentence`, `speak` to a response body, an int status
    code, or an exception instance to raise.
    """

    def __init__(self, audio: bytes):
        self.requests = []
        self.health = {"status": "ok", "model": "ru_RU-irina-medium"}
        self.sentence = {"sentence": "Я хочу пить.", "originalWords": ["я", "хотеть", "пить"]}
        self.speak = audio

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        routes = {
            ("GET", "/health"): self.health,
            ("POST", "/api/sentence"): self.sentence,
            ("POST", "/api/speak"): self.speak,
        }
        behaviour = routes.get((request.method, request.url.path))
        if behaviour is None:
            return httpx.Response(404)
        if isinstance(behaviour, Exception):
            raise behaviour
        if isinstance(behaviour, int):
            return httpx.Response(behaviour)
        if isinstance(behaviour, bytes):
            return httpx.Response(200, content=behaviour, headers={"content-type": "audio/wav"})
        return httpx.Response(200, json=behaviour)

    def paths(self):
        return [r.url.path for r in self.requests]


@pytest.fixture
def sample_wav():
    """Half a second of tone at 22050 Hz"""
    return encode_wav(generate_tone(0.5, 22050), 22050)


@pytest.fixture
def speech_server(sample_wav):
    return FakeSpeechServer(sample_wav)


@pytest.fixture
async def speech_client(speech_server, engine, monitor):
    client = RemoteSpeechClient(
        base_url="http://nlp.test",
        engine=engine,
        transport=httpx.MockTransport(speech_server),
        monitor=monitor,
    )
    yield client
    await client.aclose()


# ============================================================================
# LOCAL SPEECH ENGINE FIXTURES
# ============================================================================

@pytest.fixture
def platform_voices():
    return [
        SimpleNamespace(name="Microsoft Irina Desktop - Russian", languages=["ru_RU"]),
        SimpleNamespace(name="Microsoft Zira Desktop - English", languages=[b"\x05en_US"]),
        SimpleNamespace(name="Microsoft David Desktop - English", languages=["en_US"]),
    ]


@pytest.fixture
def platform_engine(platform_voices):
    """Mock pyttsx3 engine"""
    speech_engine = MagicMock()
    speech_engine.getProperty.side_effect = (
        lambda name: platform_voices if name == "voices" else None
    )
    return speech_engine


# ============================================================================
# AUDIO OUTPUT FIXTURES
# ============================================================================

class FakeVoice(OutputVoice):
    """Output voice that ends, fails or hangs on demand"""

    def __init__(self, output, audio, gain, loop, on_ended, on_error):
        self.output = output
        self.audio = audio
        self.gain = gain
        self.loop = loop
        self.on_ended = on_ended
        self.on_error = on_error
        self.started = False
        self.disconnected = False

    def start(self) -> None:
        if self.output.fail_start:
            raise RuntimeError("device busy")
        self.started = True
        event_loop = asyncio.get_running_loop()
        if self.output.stream_error is not None:
            event_loop.call_soon(self.on_error, self.output.stream_error)
        elif not self.output.hold:
            event_loop.call_soon(self.on_ended)

    def disconnect(self) -> None:
        self.disconnected = True


class FakeOutput(AudioOutput):
    """In-memory output context; decodes canonical WAV only"""

    def __init__(self, fail_start=False, stream_error=None, hold=False):
        self.state = OutputState.RUNNING
        self.fail_start = fail_start
        self.stream_error = stream_error
        self.hold = hold
        self.voices = []
        self.decoded_buffers = []
        self.resumed = 0

    async def resume(self) -> None:
        self.resumed += 1
        self.state = OutputState.RUNNING

    async def decode(self, data: bytearray) -> DecodedAudio:
        self.decoded_buffers.append(data)
        try:
            header = read_wav_header(bytes(data))
        except ValueError as e:
            raise DecodeError(str(e)) from e
        # Real decoders may detach the buffer they are given
        data[:] = b"\x00" * len(data)
        frames = np.zeros((header.sample_count, 1), dtype=np.float32)
        return DecodedAudio(frames=frames, sample_rate=header.sample_rate)

    def create_voice(self, audio, gain, loop, on_ended, on_error) -> OutputVoice:
        voice = FakeVoice(self, audio, gain, loop, on_ended, on_error)
        self.voices.append(voice)
        return voice

    async def close(self) -> None:
        self.state = OutputState.CLOSED


@pytest.fixture
def fake_output():
    return FakeOutput()


def output_factory_for(*outputs):
    """Factory handing out the given outputs in order"""
    queue = list(outputs)

    def factory():
        return queue.pop(0)

    return factory


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers"""
    config.addinivalue_line(
        "markers", "requires_audio: marks tests that need a real audio device"
    )
