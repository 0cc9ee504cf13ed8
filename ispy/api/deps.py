# ispy/api/deps.py
import logging
from functools import lru_cache
from fastapi import HTTPException, status

from ispy.core.exceptions import GameNotFoundError
from ispy.services import session_service
from ispy.services.gemini_service import GeminiService
from ispy.services.session_service import GameSession

logger = logging.getLogger("ispy.api.deps")  # Logger for this module


@lru_cache()
def get_collaborator() -> GeminiService:
    """One Gemini client shared by every game."""
    return GeminiService()


def get_game_session(game_id: str) -> GameSession:
    try:
        return session_service.get_game(game_id)
    except GameNotFoundError as e:
        logger.warning(f"Request for unknown game {game_id}.")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
