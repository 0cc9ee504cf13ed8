# ispy/services/session_service.py
import asyncio
import logging
import random
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from ispy.core.config import settings
from ispy.core.exceptions import GameNotFoundError, GeminiServiceError, TooManyGamesError
from ispy.models.events import (
    CandidatesReceived, CollaboratorCommand, CollaboratorFailed, DescribeObjectCommand, DescriptionFailed,
    DescriptionReady, DetectionFailed, DetectionSucceeded, DetectObjectsCommand, GameCommand, GameEvent,
    GuessFromDescriptionCommand, SpeakCommand, StartSpeechCaptureCommand, TransitionResult,
)
from ispy.models.game import GameSnapshot
from ispy.services.game_service import GameOrchestrator
from ispy.services.gemini_service import GeminiService

logger = logging.getLogger("ispy.services.session_service")  # Logger for this module

# Receives (message_type, payload); message_type is "snapshot", "speak" or "start_speech_capture"
Listener = Callable[[str, Dict[str, Any]], Awaitable[None]]


class GameSession:
    """
    One running game. Events go through `dispatch` one at a time; AI requests emitted by a
    transition run as background tasks and come back as completion events carrying the
    request's token. The collaborator is anything with the `GeminiService` coroutine
    methods (`detect_objects`, `guess_from_description`, `describe_object`).
    """

    def __init__(self, game_id: str, collaborator, rng: Optional[random.Random] = None):
        self.game_id = game_id
        self.collaborator = collaborator
        self.orchestrator = GameOrchestrator(rng=rng)
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []

    @property
    def snapshot(self) -> GameSnapshot:
        return self.orchestrator.state

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def dispatch(self, event: GameEvent) -> TransitionResult:
        async with self._lock:
            result = self.orchestrator.handle(event)
            if not result.accepted:
                return result
            await self._publish("snapshot", result.state.public_dump())
            for command in result.commands:
                await self._run_command(command)
        return result

    async def _run_command(self, command: GameCommand) -> None:
        if isinstance(command, SpeakCommand):
            await self._publish("speak", {"text": command.text})
        elif isinstance(command, StartSpeechCaptureCommand):
            await self._publish("start_speech_capture", {})
        else:
            task = asyncio.create_task(self._run_collaborator(command))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_collaborator(self, command: CollaboratorCommand) -> None:
        try:
            event = await self._call_collaborator(command)
        except GeminiServiceError as e:
            logger.error(f"G:{self.game_id} - {command.type} failed at stage {e.stage}: {e.message}")
            event = _failure_event(command, e.message)
        except Exception as e:
            logger.exception(f"G:{self.game_id} - Unexpected error running {command.type}: {e}")
            event = _failure_event(command, str(e))
        await self.dispatch(event)

    async def _call_collaborator(self, command: CollaboratorCommand) -> GameEvent:
        if isinstance(command, DetectObjectsCommand):
            objects = await self.collaborator.detect_objects(command.image)
            return DetectionSucceeded(token=command.token, objects=objects)
        if isinstance(command, GuessFromDescriptionCommand):
            candidates = await self.collaborator.guess_from_description(command.image, command.clue)
            return CandidatesReceived(token=command.token, candidates=candidates)
        text = await self.collaborator.describe_object(command.image, command.object)
        return DescriptionReady(token=command.token, text=text)

    async def _publish(self, message_type: str, payload: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(message_type, payload)
            except Exception as e:
                logger.exception(f"G:{self.game_id} - Listener failed on '{message_type}': {e}. Removing it.")
                self.remove_listener(listener)

    async def wait_idle(self) -> None:
        """Waits until no AI request is in flight (including requests issued by their completions)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
        self._listeners.clear()
        logger.info(f"G:{self.game_id} - Session closed.")


def _failure_event(command: CollaboratorCommand, reason: str) -> GameEvent:
    if isinstance(command, DetectObjectsCommand):
        return DetectionFailed(token=command.token, reason=reason)
    if isinstance(command, DescribeObjectCommand):
        return DescriptionFailed(token=command.token, reason=reason)
    return CollaboratorFailed(token=command.token, reason=reason)


# In-memory store. Games live only as long as the process.
active_games: Dict[str, GameSession] = {}


def create_game(collaborator=None, rng: Optional[random.Random] = None) -> GameSession:
    if len(active_games) >= settings.MAX_ACTIVE_GAMES:
        logger.error(f"Refusing new game: {len(active_games)} games already active.")
        raise TooManyGamesError(f"Limit of {settings.MAX_ACTIVE_GAMES} active games reached")
    if collaborator is None:
        collaborator = GeminiService()
    game_id = f"game_{uuid.uuid4().hex[:12]}"
    session = GameSession(game_id, collaborator, rng=rng)
    active_games[game_id] = session
    logger.info(f"G:{game_id} - Game created. Active games: {len(active_games)}")
    return session


def get_game(game_id: str) -> GameSession:
    session = active_games.get(game_id)
    if session is None:
        raise GameNotFoundError(game_id)
    return session


async def remove_game(game_id: str) -> None:
    session = active_games.pop(game_id, None)
    if session is None:
        raise GameNotFoundError(game_id)
    await session.close()
    logger.info(f"G:{game_id} - Game removed. Active games: {len(active_games)}")


async def close_all_games() -> None:
    for game_id in list(active_games.keys()):
        await remove_game(game_id)
