# ispy/services/scoring.py
import logging

from ispy.core.config import settings

logger = logging.getLogger("ispy.services.scoring")  # Logger for this module

def points_for_attempt(attempt: int) -> int:
    """Points for a correct guess on the given (1-based) attempt: 10, 8, 6, 4, then 2."""
    if attempt < 1:
        logger.warning(f"Invalid attempt count {attempt}; treating it as a first attempt.")
        attempt = 1
    table = settings.POINTS_BY_ATTEMPT
    if attempt <= len(table):
        return table[attempt - 1]
    return settings.MIN_POINTS

def failure_bonus() -> int:
    """Flat award to the picker when the guesser runs out of candidates."""
    return settings.FAILURE_BONUS_POINTS
