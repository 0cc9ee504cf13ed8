from enum import Enum

class GamePhase(Enum):
    START = "start"
    DETECTING_OBJECTS = "detecting_objects"
    HUMAN_PICKING = "human_picking"
    HUMAN_CONFIRMING = "human_confirming"
    HUMAN_DESCRIBING = "human_describing"
    AI_GUESSING = "ai_guessing"
    AI_PICKING = "ai_picking"
    HUMAN_GUESSING = "human_guessing"
    ROUND_OVER = "round_over"
    ERROR = "error"

class RoundRole(Enum):
    HUMAN_PICKS = "human_picks"
    AI_PICKS = "ai_picks"

class Party(Enum):
    HUMAN = "human"
    AI = "ai"

class PendingKind(Enum):
    DETECTION = "detection"
    CANDIDATES = "candidates"
    DESCRIPTION = "description"
    SPEECH = "speech"

class RoundEndReason(Enum):
    AI_GUESSED = "ai_guessed"
    HUMAN_GUESSED = "human_guessed"
    AI_OUT_OF_GUESSES = "ai_out_of_guesses"  # Human gets the failure bonus

class SpeechErrorCode(str, Enum):
    PERMISSION_DENIED = "permission-denied"
    NOT_ALLOWED = "not-allowed"  # Browser name for a denied microphone
    NOT_SUPPORTED = "not-supported"
    AUDIO_CAPTURE = "audio-capture"
    SERVICE_NOT_ALLOWED = "service-not-allowed"
    NO_SPEECH = "no-speech"
    NETWORK = "network"
    ABORTED = "aborted"

FATAL_SPEECH_ERRORS = {
    SpeechErrorCode.PERMISSION_DENIED.value,
    SpeechErrorCode.NOT_ALLOWED.value,
    SpeechErrorCode.NOT_SUPPORTED.value,
    SpeechErrorCode.AUDIO_CAPTURE.value,
    SpeechErrorCode.SERVICE_NOT_ALLOWED.value,
}
