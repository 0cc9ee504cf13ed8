# ispy/models/events.py
from pydantic import BaseModel, Field, TypeAdapter
from typing import Annotated, Any, List, Literal, Union

from ispy.models.game import DetectedObject, GameObject, GameSnapshot

# --- User events (presentation layer) ---

class ImageAccepted(BaseModel):
    type: Literal["image_accepted"] = "image_accepted"
    image: str = Field(min_length=1, description="Data URL or bare base64 of the photo for this game.")

class ObjectClicked(BaseModel):
    type: Literal["object_clicked"] = "object_clicked"
    x: float = Field(ge=0, le=1)
    y: float = Field(ge=0, le=1)

class ReviseSelection(BaseModel):
    type: Literal["revise_selection"] = "revise_selection"

class ConfirmSelection(BaseModel):
    type: Literal["confirm_selection"] = "confirm_selection"

class StartRecording(BaseModel):
    type: Literal["start_recording"] = "start_recording"

class DescriptionCaptured(BaseModel):
    type: Literal["description_captured"] = "description_captured"
    text: str

class SpeechFailed(BaseModel):
    type: Literal["speech_failed"] = "speech_failed"
    code: str

class NextGuessPresented(BaseModel):
    type: Literal["next_guess_presented"] = "next_guess_presented"

class GuessAccepted(BaseModel):
    type: Literal["guess_accepted"] = "guess_accepted"

class GuessRejected(BaseModel):
    type: Literal["guess_rejected"] = "guess_rejected"

class NextRound(BaseModel):
    type: Literal["next_round"] = "next_round"

class ResetGame(BaseModel):
    type: Literal["reset_game"] = "reset_game"

# --- Collaborator completion events; token is the one of the request they answer ---

class DetectionSucceeded(BaseModel):
    type: Literal["detection_succeeded"] = "detection_succeeded"
    token: int
    objects: List[DetectedObject]

class DetectionFailed(BaseModel):
    type: Literal["detection_failed"] = "detection_failed"
    token: int
    reason: str = ""

class CandidatesReceived(BaseModel):
    type: Literal["candidates_received"] = "candidates_received"
    token: int
    candidates: List[DetectedObject]

class DescriptionReady(BaseModel):
    type: Literal["description_ready"] = "description_ready"
    token: int
    text: str

class DescriptionFailed(BaseModel):
    type: Literal["description_failed"] = "description_failed"
    token: int
    reason: str = ""

class CollaboratorFailed(BaseModel):
    type: Literal["collaborator_failed"] = "collaborator_failed"
    token: int
    reason: str = ""

UserEvent = Annotated[
    Union[
        ImageAccepted, ObjectClicked, ReviseSelection, ConfirmSelection, StartRecording,
        DescriptionCaptured, SpeechFailed, NextGuessPresented, GuessAccepted, GuessRejected,
        NextRound, ResetGame,
    ],
    Field(discriminator="type"),
]

CompletionEvent = Union[
    DetectionSucceeded, DetectionFailed, CandidatesReceived,
    DescriptionReady, DescriptionFailed, CollaboratorFailed,
]

GameEvent = Union[
    ImageAccepted, ObjectClicked, ReviseSelection, ConfirmSelection, StartRecording,
    DescriptionCaptured, SpeechFailed, NextGuessPresented, GuessAccepted, GuessRejected,
    NextRound, ResetGame,
    DetectionSucceeded, DetectionFailed, CandidatesReceived,
    DescriptionReady, DescriptionFailed, CollaboratorFailed,
]

# --- Commands emitted by a transition ---

class DetectObjectsCommand(BaseModel):
    type: Literal["detect_objects"] = "detect_objects"
    image: str
    token: int

class GuessFromDescriptionCommand(BaseModel):
    type: Literal["guess_from_description"] = "guess_from_description"
    image: str
    clue: str
    token: int

class DescribeObjectCommand(BaseModel):
    type: Literal["describe_object"] = "describe_object"
    image: str
    object: GameObject
    token: int

class SpeakCommand(BaseModel):
    type: Literal["speak"] = "speak"
    text: str

class StartSpeechCaptureCommand(BaseModel):
    type: Literal["start_speech_capture"] = "start_speech_capture"

CollaboratorCommand = Union[DetectObjectsCommand, GuessFromDescriptionCommand, DescribeObjectCommand]

GameCommand = Union[
    DetectObjectsCommand, GuessFromDescriptionCommand, DescribeObjectCommand,
    SpeakCommand, StartSpeechCaptureCommand,
]

class TransitionResult(BaseModel):
    state: GameSnapshot
    message: str
    commands: List[GameCommand] = []
    accepted: bool = True

user_event_adapter = TypeAdapter(UserEvent)

def parse_user_event(data: Any) -> UserEvent:
    """Validates a raw JSON payload into one of the user events. Raises pydantic.ValidationError."""
    return user_event_adapter.validate_python(data)
