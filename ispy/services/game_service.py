# ispy/services/game_service.py
"""
Round orchestration for the I Spy game.

`process_game_event(state, event, rng)` is a pure transition: it never mutates the
snapshot it is given, and returns the next snapshot, the user-facing message and the
commands the caller must run (collaborator requests, speech output). Events that make
no sense in the current phase are ignored (`accepted=False`), never raised.
"""
import logging
import random
import re
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ispy.core.config import settings
from ispy.models.enums import FATAL_SPEECH_ERRORS, GamePhase, Party, PendingKind, RoundEndReason, RoundRole, SpeechErrorCode
from ispy.models.events import (
    CandidatesReceived, CollaboratorFailed, ConfirmSelection, DescribeObjectCommand, DescriptionCaptured,
    DescriptionFailed, DescriptionReady, DetectObjectsCommand, DetectionFailed, DetectionSucceeded, GameCommand,
    GameEvent, GuessAccepted, GuessFromDescriptionCommand, GuessRejected, ImageAccepted, NextGuessPresented,
    NextRound, ObjectClicked, ResetGame, ReviseSelection, SpeakCommand, SpeechFailed, StartRecording,
    StartSpeechCaptureCommand, TransitionResult,
)
from ispy.models.game import MIN_MASK_POINTS, DetectedObject, GameObject, GameSnapshot, PendingRequest, RoundResult, RoundState
from ispy.services.scoring import failure_bonus, points_for_attempt
from ispy.services.spatial_index import resolve_click
from ispy.utils.colors import generate_mask_colors

logger = logging.getLogger("ispy.services.game_service")  # Logger for this module

# (message, commands) produced by a handler, or None when the event is ignored
Outcome = Optional[Tuple[str, List[GameCommand]]]

MSG_WELCOME = "Upload a picture or use the camera to start a round of I Spy against the AI."
MSG_DETECTING = "Detecting objects..."
MSG_NO_OBJECTS = "No objects were detected in the picture. Please reset and try another picture."
MSG_DETECTION_FAILED = "Object detection failed. Please reset and try again."
MSG_HUMAN_PICKING = "Your turn! Pick an object in the picture."
MSG_AI_PICKING = "The AI is picking an object..."
MSG_RECORD_CLUE = 'Record your clue: "I spy with my little eye something that is..."'
MSG_CANDIDATES_FAILED = "The AI could not come up with any guesses. Please reset the game."
CLUE_PREFIX = "I spy with my little eye something that"
WORD_RE = re.compile(r"[\w']+")
CLUE_EDGE_CHARS = " .,;:!?\""

SPEECH_ERROR_MESSAGES: Dict[str, str] = {
    SpeechErrorCode.PERMISSION_DENIED.value: "Microphone access denied. Please allow microphone access and reset the game.",
    SpeechErrorCode.NOT_ALLOWED.value: "Microphone access denied. Please allow microphone access and reset the game.",
    SpeechErrorCode.NOT_SUPPORTED.value: "Speech recognition is not supported on this device.",
    SpeechErrorCode.AUDIO_CAPTURE.value: "Microphone not available or broken.",
    SpeechErrorCode.SERVICE_NOT_ALLOWED.value: "Speech recognition service not available.",
    SpeechErrorCode.NO_SPEECH.value: "No speech detected. Please speak clearly and try again.",
    SpeechErrorCode.NETWORK.value: "Network error during speech recognition. Check your connection and try again.",
}

# Completion event type -> kind of request it answers
COMPLETION_KINDS: Dict[str, Tuple[PendingKind, ...]] = {
    "detection_succeeded": (PendingKind.DETECTION,),
    "detection_failed": (PendingKind.DETECTION,),
    "candidates_received": (PendingKind.CANDIDATES,),
    "description_ready": (PendingKind.DESCRIPTION,),
    "description_failed": (PendingKind.DESCRIPTION,),
    "collaborator_failed": (PendingKind.DETECTION, PendingKind.CANDIDATES, PendingKind.DESCRIPTION),
}


def clean_transcript(transcript: str) -> str:
    """
    Lower-cases the transcript and strips the spoken opening phrase. Punctuation only
    matters for finding the phrase; the clue itself keeps it, bar the sentence edges.
    """
    text = " ".join(transcript.lower().split())
    prefix_words = WORD_RE.findall(settings.SPOKEN_PREFIX.lower())
    words = list(WORD_RE.finditer(text))
    if prefix_words and [w.group() for w in words[: len(prefix_words)]] == prefix_words:
        text = text[words[len(prefix_words) - 1].end():]
    return text.strip(CLUE_EDGE_CHARS)


def build_game_objects(detected: Sequence[DetectedObject]) -> List[GameObject]:
    """Assigns stable ids (detection order) and display colors to detected objects."""
    usable = []
    for d in detected:
        if not d.label.strip():
            continue
        if len(d.mask) < MIN_MASK_POINTS:
            logger.debug(f"Dropped detected object '{d.label.strip()}': mask has {len(d.mask)} points.")
            continue
        usable.append(d)
    if len(usable) > settings.MAX_DETECTED_OBJECTS:
        logger.debug(f"Keeping the first {settings.MAX_DETECTED_OBJECTS} of {len(usable)} detected objects.")
        usable = usable[: settings.MAX_DETECTED_OBJECTS]
    colors = generate_mask_colors(len(usable))
    return [
        GameObject(
            id=f"obj-{index}",
            label=d.label.strip(),
            mask=d.mask,
            color=colors[index],
            bounding_box=d.bounding_box,
            image_data=d.image_data,
        )
        for index, d in enumerate(usable)
    ]


def match_candidates(round_state: RoundState, candidates: Sequence[DetectedObject]) -> List[GameObject]:
    """
    Maps the AI's ranked candidates onto the round's objects by case-insensitive label.
    Unmatched candidates and repeats of an already queued object are skipped.
    """
    queue: List[GameObject] = []
    seen_ids = set()
    for candidate in candidates:
        match = round_state.find_by_label(candidate.label)
        if match is None:
            logger.debug(f"Skipping AI candidate '{candidate.label}': no object with that label.")
            continue
        if match.id in seen_ids:
            continue
        seen_ids.add(match.id)
        queue.append(match)
    return queue


# --- Helpers operating on a working copy of the snapshot ---

def _await_collaborator(state: GameSnapshot, kind: PendingKind) -> int:
    state.sequence += 1
    state.pending = PendingRequest(kind=kind, token=state.sequence)
    return state.sequence


def _finish_round(state: GameSnapshot, winner: Party, points: int, reason: RoundEndReason) -> None:
    # Score and phase change together on the same copy, so no caller sees half an award
    state.score = state.score.award(winner, points)
    state.last_round_result = RoundResult(winner=winner, points=points, reason=reason)
    state.phase = GamePhase.ROUND_OVER
    logger.info(
        f"Round over ({reason.value}): {winner.value} +{points}. "
        f"Score user:{state.score.user} ai:{state.score.ai}"
    )


def _start_round(state: GameSnapshot, rng: random.Random) -> Tuple[str, List[GameCommand]]:
    picker = state.alternator.next_picker
    state.round.reset_for_new_round(picker)
    state.last_round_result = None

    if picker == RoundRole.HUMAN_PICKS:
        state.phase = GamePhase.HUMAN_PICKING
        logger.info(f"New round with {len(state.round.objects)} objects. Human picks.")
        return MSG_HUMAN_PICKING, []

    state.phase = GamePhase.AI_PICKING
    secret = rng.choice(state.round.objects)
    state.round.picked_object_id = secret.id
    token = _await_collaborator(state, PendingKind.DESCRIPTION)
    logger.info(f"New round with {len(state.round.objects)} objects. AI picked {secret.id}.")
    return MSG_AI_PICKING, [DescribeObjectCommand(image=state.image, object=secret, token=token)]


def _present_guess(state: GameSnapshot) -> Tuple[str, List[GameCommand]]:
    guess = state.round.current_guess
    return f'Is it "{guess.label}"?', [SpeakCommand(text=f"Let me guess. Is it {guess.label}?")]


def _ai_out_of_guesses(state: GameSnapshot) -> Tuple[str, List[GameCommand]]:
    picked = state.round.picked_object
    _finish_round(state, Party.HUMAN, failure_bonus(), RoundEndReason.AI_OUT_OF_GUESSES)
    label = picked.label if picked else "?"
    return (
        f'The AI could not guess your object "{label}". You earn {failure_bonus()} points.',
        [SpeakCommand(text="Too bad, I could not find it.")],
    )


def _announce_clue(state: GameSnapshot, description: str) -> Tuple[str, List[GameCommand]]:
    state.round.clue = description
    state.round.attempt_count = 0
    state.round.clear_click_cycle()
    state.phase = GamePhase.HUMAN_GUESSING
    clue = f"{CLUE_PREFIX} {description}"
    return clue, [SpeakCommand(text=clue)]


# --- Event handlers. Each receives a working copy and returns None to ignore the event ---

def _on_image_accepted(state: GameSnapshot, event: ImageAccepted, rng: random.Random) -> Outcome:
    if state.phase != GamePhase.START:
        return None
    state.image = event.image
    state.phase = GamePhase.DETECTING_OBJECTS
    token = _await_collaborator(state, PendingKind.DETECTION)
    logger.info(f"Image accepted, requesting object detection (token {token}).")
    return MSG_DETECTING, [DetectObjectsCommand(image=event.image, token=token)]


def _on_detection_succeeded(state: GameSnapshot, event: DetectionSucceeded, rng: random.Random) -> Outcome:
    state.pending = None
    objects = build_game_objects(event.objects)
    if not objects:
        logger.warning("Object detection returned no objects.")
        state.phase = GamePhase.ERROR
        state.image = None
        return MSG_NO_OBJECTS, []
    state.round = RoundState(objects=objects)
    return _start_round(state, rng)


def _on_detection_failed(state: GameSnapshot, event: DetectionFailed, rng: random.Random) -> Outcome:
    state.pending = None
    logger.error(f"Object detection failed: {event.reason}")
    state.phase = GamePhase.ERROR
    return MSG_DETECTION_FAILED, []


def _on_object_clicked(state: GameSnapshot, event: ObjectClicked, rng: random.Random) -> Outcome:
    if state.phase not in (GamePhase.HUMAN_PICKING, GamePhase.HUMAN_CONFIRMING, GamePhase.HUMAN_GUESSING):
        return None
    rnd = state.round
    selected_id, rnd.last_clicked_set, rnd.cycle_index = resolve_click(
        rnd.objects, (event.x, event.y), rnd.last_clicked_set, rnd.cycle_index
    )
    selected = rnd.get_object(selected_id)

    if state.phase in (GamePhase.HUMAN_PICKING, GamePhase.HUMAN_CONFIRMING):
        if selected is None:
            # Nothing under the pointer; a pick made earlier stays in place
            return state.message, []
        rnd.picked_object_id = selected.id
        state.phase = GamePhase.HUMAN_CONFIRMING
        return f'You picked "{selected.label}". Confirm?', []

    # Human is guessing the AI's object
    if selected is None:
        return state.message, []
    rnd.attempt_count += 1
    if selected.id == rnd.picked_object_id:
        points = points_for_attempt(rnd.attempt_count)
        _finish_round(state, Party.HUMAN, points, RoundEndReason.HUMAN_GUESSED)
        return (
            f'Correct! It was "{selected.label}". You earn {points} points.',
            [SpeakCommand(text=f"Correct! You get {points} points.")],
        )
    logger.debug(f"Human guessed {selected.id} on attempt {rnd.attempt_count}; wrong.")
    return f'That is "{selected.label}". Wrong, try again!', [SpeakCommand(text="Sorry, wrong.")]


def _on_revise_selection(state: GameSnapshot, event: ReviseSelection, rng: random.Random) -> Outcome:
    if state.phase != GamePhase.HUMAN_CONFIRMING:
        return None
    state.round.picked_object_id = None
    state.round.clear_click_cycle()
    state.phase = GamePhase.HUMAN_PICKING
    return MSG_HUMAN_PICKING, []


def _on_confirm_selection(state: GameSnapshot, event: ConfirmSelection, rng: random.Random) -> Outcome:
    if state.phase != GamePhase.HUMAN_CONFIRMING or state.round.picked_object_id is None:
        return None
    state.phase = GamePhase.HUMAN_DESCRIBING
    logger.info(f"Human confirmed {state.round.picked_object_id}.")
    return MSG_RECORD_CLUE, []


def _on_start_recording(state: GameSnapshot, event: StartRecording, rng: random.Random) -> Outcome:
    if state.phase != GamePhase.HUMAN_DESCRIBING or state.is_awaiting(PendingKind.SPEECH):
        return None
    _await_collaborator(state, PendingKind.SPEECH)
    return MSG_RECORD_CLUE, [StartSpeechCaptureCommand()]


def _on_description_captured(state: GameSnapshot, event: DescriptionCaptured, rng: random.Random) -> Outcome:
    if state.phase != GamePhase.HUMAN_DESCRIBING:
        return None
    state.pending = None
    clue = clean_transcript(event.text)
    if not clue:
        logger.warning("Transcript was empty after removing the spoken prefix.")
        return SPEECH_ERROR_MESSAGES[SpeechErrorCode.NO_SPEECH.value], []

    state.round.clue = clue
    state.phase = GamePhase.AI_GUESSING
    token = _await_collaborator(state, PendingKind.CANDIDATES)
    logger.info(f"Clue captured, requesting AI candidates (token {token}).")
    return (
        f'Your clue: "{clue}". The AI is thinking...',
        [GuessFromDescriptionCommand(image=state.image, clue=clue, token=token)],
    )


def _on_speech_failed(state: GameSnapshot, event: SpeechFailed, rng: random.Random) -> Outcome:
    if state.phase != GamePhase.HUMAN_DESCRIBING:
        return None
    state.pending = None
    code = event.code.strip().lower()
    message = SPEECH_ERROR_MESSAGES.get(code, f"Speech recognition error: {code}. Please try again.")
    if code in FATAL_SPEECH_ERRORS:
        logger.error(f"Fatal speech error '{code}'.")
        state.phase = GamePhase.ERROR
    else:
        logger.warning(f"Recoverable speech error '{code}'; the human may record again.")
    return message, []


def _on_candidates_received(state: GameSnapshot, event: CandidatesReceived, rng: random.Random) -> Outcome:
    state.pending = None
    state.round.guess_queue = match_candidates(state.round, event.candidates)
    logger.info(
        f"AI returned {len(event.candidates)} candidates, {len(state.round.guess_queue)} match objects in the picture."
    )
    if not state.round.guess_queue:
        return _ai_out_of_guesses(state)
    state.round.attempt_count = 1
    return _present_guess(state)


def _on_next_guess_presented(state: GameSnapshot, event: NextGuessPresented, rng: random.Random) -> Outcome:
    if state.phase != GamePhase.AI_GUESSING or state.pending or not state.round.guess_queue:
        return None
    return _present_guess(state)


def _on_guess_accepted(state: GameSnapshot, event: GuessAccepted, rng: random.Random) -> Outcome:
    if state.phase != GamePhase.AI_GUESSING or state.pending or not state.round.guess_queue:
        return None
    attempts = state.round.attempt_count
    points = points_for_attempt(attempts)
    _finish_round(state, Party.AI, points, RoundEndReason.AI_GUESSED)
    return (
        f"The AI guessed it on attempt {attempts} and earns {points} points!",
        [SpeakCommand(text="Yay! I got it.")],
    )


def _on_guess_rejected(state: GameSnapshot, event: GuessRejected, rng: random.Random) -> Outcome:
    if state.phase != GamePhase.AI_GUESSING or state.pending or not state.round.guess_queue:
        return None
    state.round.attempt_count += 1
    state.round.guess_queue.pop(0)
    if not state.round.guess_queue:
        return _ai_out_of_guesses(state)
    return _present_guess(state)


def _on_description_ready(state: GameSnapshot, event: DescriptionReady, rng: random.Random) -> Outcome:
    state.pending = None
    description = event.text.strip()
    if not description:
        logger.warning("AI description was empty; using the fallback clue.")
        description = settings.DESCRIPTION_FALLBACK
    return _announce_clue(state, description)


def _on_description_failed(state: GameSnapshot, event: DescriptionFailed, rng: random.Random) -> Outcome:
    state.pending = None
    logger.warning(f"AI description failed ({event.reason}); using the fallback clue.")
    return _announce_clue(state, settings.DESCRIPTION_FALLBACK)


def _on_collaborator_failed(state: GameSnapshot, event: CollaboratorFailed, rng: random.Random) -> Outcome:
    failed_kind = state.pending.kind
    state.pending = None
    logger.error(f"AI collaborator failed during {failed_kind.value} in phase {state.phase.value}: {event.reason}")
    previous_message = state.message
    state.phase = GamePhase.ERROR
    if failed_kind == PendingKind.CANDIDATES:
        return MSG_CANDIDATES_FAILED, []
    if failed_kind == PendingKind.DETECTION:
        return MSG_DETECTION_FAILED, []
    return f"The AI service failed while: {previous_message} Please reset the game.", []


def _on_next_round(state: GameSnapshot, event: NextRound, rng: random.Random) -> Outcome:
    if state.phase != GamePhase.ROUND_OVER:
        return None
    state.alternator.flip()
    return _start_round(state, rng)


_HANDLERS: Dict[str, Callable[[GameSnapshot, GameEvent, random.Random], Outcome]] = {
    "image_accepted": _on_image_accepted,
    "detection_succeeded": _on_detection_succeeded,
    "detection_failed": _on_detection_failed,
    "object_clicked": _on_object_clicked,
    "revise_selection": _on_revise_selection,
    "confirm_selection": _on_confirm_selection,
    "start_recording": _on_start_recording,
    "description_captured": _on_description_captured,
    "speech_failed": _on_speech_failed,
    "candidates_received": _on_candidates_received,
    "next_guess_presented": _on_next_guess_presented,
    "guess_accepted": _on_guess_accepted,
    "guess_rejected": _on_guess_rejected,
    "description_ready": _on_description_ready,
    "description_failed": _on_description_failed,
    "collaborator_failed": _on_collaborator_failed,
    "next_round": _on_next_round,
}


def _ignored(state: GameSnapshot) -> TransitionResult:
    return TransitionResult(state=state, message=state.message, commands=[], accepted=False)


def new_game(sequence: int = 0) -> GameSnapshot:
    return GameSnapshot(sequence=sequence, message=MSG_WELCOME)


def process_game_event(current: GameSnapshot, event: GameEvent, rng: random.Random) -> TransitionResult:
    """
    Applies one event to the snapshot. `current` is left untouched.

    Reset is honoured in every phase and bumps the sequence so a result still in
    flight for the old game is discarded when it arrives.
    """
    if isinstance(event, ResetGame):
        state = new_game(sequence=current.sequence + 1)
        logger.info(f"Game reset from phase {current.phase.value}.")
        return TransitionResult(state=state, message=state.message)

    handler = _HANDLERS.get(event.type)
    if handler is None:
        logger.error(f"No handler for event type '{event.type}'. Ignoring.")
        return _ignored(current)

    expected_kinds = COMPLETION_KINDS.get(event.type)
    if expected_kinds is not None:
        pending = current.pending
        if pending is None or pending.token != event.token or pending.kind not in expected_kinds:
            logger.debug(f"Discarding stale '{event.type}' (token {event.token}, pending {pending}).")
            return _ignored(current)
    elif current.pending is not None and current.pending.kind != PendingKind.SPEECH:
        logger.debug(f"Ignoring '{event.type}' while waiting for {current.pending.kind.value}.")
        return _ignored(current)

    state = current.model_copy(deep=True)
    outcome = handler(state, event, rng)
    if outcome is None:
        logger.debug(f"Ignoring '{event.type}' in phase {current.phase.value}.")
        return _ignored(current)

    message, commands = outcome
    state.message = message
    if state.phase != current.phase:
        logger.info(f"Phase {current.phase.value} -> {state.phase.value} on '{event.type}'.")
    return TransitionResult(state=state, message=message, commands=commands)


class GameOrchestrator:
    """
    Holds the current snapshot and feeds events through `process_game_event` one at a time.
    Pass a seeded `random.Random` to make the AI's picks reproducible.
    """

    def __init__(self, rng: Optional[random.Random] = None, state: Optional[GameSnapshot] = None):
        self.rng = rng if rng is not None else random.Random()
        self.state = state if state is not None else new_game()
        self._handling = False

    def handle(self, event: GameEvent) -> TransitionResult:
        if self._handling:
            raise RuntimeError("GameOrchestrator.handle is not re-entrant")
        self._handling = True
        try:
            result = process_game_event(self.state, event, self.rng)
            self.state = result.state
            return result
        finally:
            self._handling = False

    @property
    def phase(self) -> GamePhase:
        return self.state.phase

    @property
    def round(self) -> RoundState:
        return self.state.round
