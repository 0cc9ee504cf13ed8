# ispy/core/config.py
import logging
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

logger = logging.getLogger("ispy.core.config")  # Logger for this module

GEMINI_KEY_PLACEHOLDER = "YOUR_GEMINI_API_KEY_HERE"

class Settings(BaseSettings):
    PROJECT_NAME: str = "I Spy AI Backend"
    API_V1_STR: str = "/api/v1"

    # Please set your Gemini API Key in the .env file
    GEMINI_API_KEY: str = GEMINI_KEY_PLACEHOLDER
    GEMINI_VISION_MODEL: str = "gemini-2.5-flash"
    LABEL_LANGUAGE: str = "English"  # Language the detector labels objects in

    # Opening phrase the human says before the actual clue; stripped from transcripts
    SPOKEN_PREFIX: str = "i spy with my little eye something that is"
    DESCRIPTION_FALLBACK: str = "could not come up with a description"

    # --- Scoring ---
    POINTS_BY_ATTEMPT: List[int] = [10, 8, 6, 4]
    MIN_POINTS: int = 2
    FAILURE_BONUS_POINTS: int = 10

    MAX_DETECTED_OBJECTS: int = 40
    MAX_ACTIVE_GAMES: int = 100

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def gemini_configured(self) -> bool:
        return bool(self.GEMINI_API_KEY) and self.GEMINI_API_KEY != GEMINI_KEY_PLACEHOLDER

@lru_cache()
def get_settings():
    settings_instance = Settings()
    if not settings_instance.gemini_configured:
        logger.warning("GEMINI_API_KEY is not configured. AI collaborator calls will fail.")
    return settings_instance

settings = get_settings()
