# tests/conftest.py
import logging
import random
import time
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient

from ispy.api.deps import get_collaborator
from ispy.main import app
from ispy.models.events import DetectionSucceeded, ImageAccepted
from ispy.models.game import DetectedObject
from ispy.services.game_service import GameOrchestrator

TEST_IMAGE = "data:image/jpeg;base64,aGVsbG8="

# A table with a cup standing on it, and a lamp on its own
CLICK_POINTS = {
    "obj-0": (0.2, 0.8),    # table only
    "obj-1": (0.45, 0.65),  # cup on the table; smallest object under this point
    "obj-2": (0.2, 0.2),    # lamp
}
EMPTY_POINT = (0.95, 0.05)


def square(x0: float, y0: float, x1: float, y1: float):
    return [(x0, y0), (x1, y0), (x1, y1), (x0, y1)]


def detected_objects() -> List[DetectedObject]:
    return [
        DetectedObject(label="table", mask=square(0.1, 0.5, 0.9, 0.9)),
        DetectedObject(label="cup", mask=square(0.4, 0.6, 0.5, 0.7)),
        DetectedObject(label="lamp", mask=square(0.1, 0.1, 0.3, 0.4)),
    ]


class FakeCollaborator:
    """Stands in for GeminiService; answers instantly unless a gate or an error is set."""

    def __init__(self, objects=None, candidates=None, description: str = "is made of glass"):
        self.objects = objects if objects is not None else detected_objects()
        self.candidates = candidates if candidates is not None else []
        self.description = description
        self.detect_error: Optional[Exception] = None
        self.guess_error: Optional[Exception] = None
        self.gate = None  # asyncio.Event; detection waits for it when set
        self.calls = []

    async def detect_objects(self, image):
        self.calls.append(("detect_objects", image))
        if self.gate is not None:
            await self.gate.wait()
        if self.detect_error:
            raise self.detect_error
        return list(self.objects)

    async def guess_from_description(self, image, clue):
        self.calls.append(("guess_from_description", clue))
        if self.guess_error:
            raise self.guess_error
        return list(self.candidates)

    async def describe_object(self, image, game_object):
        self.calls.append(("describe_object", game_object.id))
        return self.description


@pytest.fixture
def orchestrator() -> GameOrchestrator:
    """Orchestrator with a seeded random source, at the start of a game."""
    return GameOrchestrator(rng=random.Random(7))


@pytest.fixture
def picking_orchestrator(orchestrator) -> GameOrchestrator:
    """Orchestrator past object detection, human picks first."""
    result = orchestrator.handle(ImageAccepted(image=TEST_IMAGE))
    token = result.commands[0].token
    orchestrator.handle(DetectionSucceeded(token=token, objects=detected_objects()))
    return orchestrator


@pytest.fixture
def fake_collaborator() -> FakeCollaborator:
    return FakeCollaborator()


@pytest.fixture
def client(fake_collaborator):
    """TestClient bound to one event loop for the whole test, so background AI tasks survive between requests."""
    app.dependency_overrides[get_collaborator] = lambda: fake_collaborator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.pop(get_collaborator, None)


@pytest.fixture(autouse=True)
def reset_in_memory_state():
    """Clears in-memory state before each test."""
    from ispy.services import session_service
    from ispy.api.websockets import game_manager

    session_service.active_games.clear()
    game_manager.active_connections.clear()
    yield
    session_service.active_games.clear()
    game_manager.active_connections.clear()


def wait_for_phase(client: TestClient, game_id: str, phase: str, timeout: float = 3.0) -> dict:
    """Polls the game until it reaches `phase`; AI answers arrive asynchronously."""
    deadline = time.monotonic() + timeout
    while True:
        snapshot = client.get(f"/api/v1/games/{game_id}").json()["snapshot"]
        if snapshot["phase"] == phase or time.monotonic() > deadline:
            return snapshot
        time.sleep(0.01)


def pytest_configure(config):
    """
    Hook to configure logging levels before tests are run.
    This silences noisy third-party libraries.
    """
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
