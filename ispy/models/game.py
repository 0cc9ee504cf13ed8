# ispy/models/game.py
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Tuple

from ispy.models.enums import GamePhase, Party, PendingKind, RoundEndReason, RoundRole

Point = Tuple[float, float]

MIN_MASK_POINTS = 3  # Fewer points enclose no area

def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, float(value)))

class BoundingBox(BaseModel):
    """Normalized screen-space rectangle; presentation data for segmentation masks."""
    x: float
    y: float
    width: float = Field(ge=0)
    height: float = Field(ge=0)

    @property
    def area(self) -> float:
        return self.width * self.height

    def contains(self, x: float, y: float) -> bool:
        # Strict on every edge, a pointer sitting on the border is outside
        return self.x < x < self.x + self.width and self.y < y < self.y + self.height

class DetectedObject(BaseModel):
    """An object as returned by the AI collaborator, before it gets a stable id."""
    label: str
    mask: List[Point] = []
    bounding_box: Optional[BoundingBox] = None
    image_data: Optional[str] = None  # Base64 alpha bitmap, presentation only

class GameObject(BaseModel):
    id: str
    label: str
    mask: List[Point]  # Closed polygon of normalized [x, y] points
    color: str
    bounding_box: Optional[BoundingBox] = None
    image_data: Optional[str] = None

    @field_validator("mask")
    @classmethod
    def _points_in_unit_square(cls, mask: List[Point]) -> List[Point]:
        if len(mask) < MIN_MASK_POINTS:
            raise ValueError(f"mask needs at least {MIN_MASK_POINTS} points, got {len(mask)}")
        return [(_clamp_unit(x), _clamp_unit(y)) for x, y in mask]

class Score(BaseModel):
    user: int = Field(default=0, ge=0)
    ai: int = Field(default=0, ge=0)

    def award(self, party: Party, points: int) -> "Score":
        """Returns a new Score; awards are never negative."""
        points = max(0, points)
        if party == Party.HUMAN:
            return Score(user=self.user + points, ai=self.ai)
        return Score(user=self.user, ai=self.ai + points)

class TurnAlternator(BaseModel):
    next_picker: RoundRole = RoundRole.HUMAN_PICKS

    def flip(self) -> RoundRole:
        self.next_picker = (
            RoundRole.AI_PICKS if self.next_picker == RoundRole.HUMAN_PICKS else RoundRole.HUMAN_PICKS
        )
        return self.next_picker

class RoundState(BaseModel):
    objects: List[GameObject] = []  # Detection order, fixed for the image
    picker: RoundRole = RoundRole.HUMAN_PICKS
    picked_object_id: Optional[str] = None
    guess_queue: List[GameObject] = []  # AI's ranked candidates, front is the current guess
    attempt_count: int = Field(default=0, ge=0)
    last_clicked_set: List[str] = []  # Ids under the last click, smallest area first
    cycle_index: int = 0
    clue: Optional[str] = None

    def get_object(self, object_id: Optional[str]) -> Optional[GameObject]:
        if object_id is None:
            return None
        return next((obj for obj in self.objects if obj.id == object_id), None)

    @property
    def picked_object(self) -> Optional[GameObject]:
        return self.get_object(self.picked_object_id)

    @property
    def current_guess(self) -> Optional[GameObject]:
        return self.guess_queue[0] if self.guess_queue else None

    def find_by_label(self, label: str) -> Optional[GameObject]:
        """Case-insensitive label lookup; the AI returns labels, not our ids."""
        wanted = label.strip().lower()
        return next((obj for obj in self.objects if obj.label.strip().lower() == wanted), None)

    def reset_for_new_round(self, picker: RoundRole) -> None:
        self.picker = picker
        self.picked_object_id = None
        self.guess_queue = []
        self.attempt_count = 0
        self.clue = None
        self.clear_click_cycle()

    def clear_click_cycle(self) -> None:
        self.last_clicked_set = []
        self.cycle_index = 0

class PendingRequest(BaseModel):
    kind: PendingKind
    token: int

class RoundResult(BaseModel):
    winner: Party
    points: int
    reason: RoundEndReason

class GameSnapshot(BaseModel):
    phase: GamePhase = GamePhase.START
    score: Score = Field(default_factory=Score)
    image: Optional[str] = None  # Opaque image reference handed over by the image source
    round: RoundState = Field(default_factory=RoundState)
    alternator: TurnAlternator = Field(default_factory=TurnAlternator)
    message: str = ""
    sequence: int = 0  # Bumped on every collaborator request and on reset
    pending: Optional[PendingRequest] = None
    last_round_result: Optional[RoundResult] = None

    def is_awaiting(self, kind: PendingKind) -> bool:
        return self.pending is not None and self.pending.kind == kind

    def public_dump(self) -> dict:
        """Snapshot for clients: never leaks the AI's secret pick while the human is guessing."""
        data = self.model_dump(mode="json", exclude={"image"})
        if self.phase in (GamePhase.AI_PICKING, GamePhase.HUMAN_GUESSING) and self.round.picker == RoundRole.AI_PICKS:
            data["round"]["picked_object_id"] = None
        data["has_image"] = self.image is not None
        return data
