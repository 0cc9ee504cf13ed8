# ispy/core/exceptions.py
from typing import Literal

CollaboratorStage = Literal["detection", "guessing", "description"]


class ISpyError(Exception):
    """Base class for errors raised by the I Spy backend."""


class GeminiServiceError(ISpyError):
    """The AI collaborator could not produce a usable answer."""

    def __init__(self, stage: CollaboratorStage, message: str):
        super().__init__(f"{stage} failed: {message}")
        self.stage = stage
        self.message = message


class GameNotFoundError(ISpyError):
    def __init__(self, game_id: str):
        super().__init__(f"Game '{game_id}' not found")
        self.game_id = game_id


class TooManyGamesError(ISpyError):
    pass
