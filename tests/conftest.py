import asyncio
import json

import pytest

from relay_server.sessions import PairingCoordinator, Peer


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def drain(peer: Peer) -> list:
    """Pop everything queued for ``peer``; a trailing None means it was closed."""
    frames = []
    while True:
        try:
            frames.append(peer.outbox.get_nowait())
        except asyncio.QueueEmpty:
            return frames


def decoded(frames: list) -> list:
    return [json.loads(f) for f in frames if isinstance(f, str)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def coordinator(clock):
    return PairingCoordinator(
        pending_ttl=60,
        pending_max=100,
        paired_ttl=120,
        paired_max=100,
        code_length=4,
        code_attempts=2048,
        clock=clock,
    )


@pytest.fixture
def open_peer(coordinator):
    def _open() -> Peer:
        peer = Peer()
        coordinator.on_open(peer)
        return peer
    return _open
