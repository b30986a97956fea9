"""
AAC Speech Bridge Test Suite

Tests for:
- Resilience engine (retry, circuit breaker, error history)
- Remote speech client
- TTS providers and provider selection
- Playback engine and speech service

Run tests with:
    pytest tests/ -v
"""
