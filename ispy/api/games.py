# ispy/api/games.py
import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Body, Depends, Response, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field, ValidationError

from ispy.api import deps
from ispy.models.events import parse_user_event
from ispy.services import session_service
from ispy.services.session_service import GameSession
from ispy.services.spatial_index import separate_hover

logger = logging.getLogger("ispy.api.games")  # Logger for this module
router = APIRouter()


class GameResponse(BaseModel):
    game_id: str
    snapshot: Dict[str, Any]


class EventResponse(BaseModel):
    accepted: bool
    snapshot: Dict[str, Any]


class HoverRequest(BaseModel):
    x: float = Field(ge=0, le=1)
    y: float = Field(ge=0, le=1)


class HoverResponse(BaseModel):
    object_id: Optional[str] = None


@router.post("", response_model=GameResponse, status_code=status.HTTP_201_CREATED)
async def create_game(collaborator=Depends(deps.get_collaborator)):
    session = session_service.create_game(collaborator=collaborator)
    return GameResponse(game_id=session.game_id, snapshot=session.snapshot.public_dump())


@router.get("/{game_id}", response_model=GameResponse)
async def get_game(session: GameSession = Depends(deps.get_game_session)):
    return GameResponse(game_id=session.game_id, snapshot=session.snapshot.public_dump())


@router.post("/{game_id}/events", response_model=EventResponse)
async def post_event(
    payload: Dict[str, Any] = Body(..., description="One user event, e.g. {\"type\": \"object_clicked\", \"x\": 0.4, \"y\": 0.6}"),
    session: GameSession = Depends(deps.get_game_session),
):
    """
    Dispatches one user event. Completion events are produced by the server itself and
    are rejected here. An event that makes no sense in the current phase is answered
    with `accepted: false` and the unchanged snapshot.
    """
    try:
        event = parse_user_event(payload)
    except ValidationError as e:
        logger.warning(f"G:{session.game_id} - Rejected malformed event payload: {payload.get('type')}")
        raise RequestValidationError(e.errors())
    result = await session.dispatch(event)
    return EventResponse(accepted=result.accepted, snapshot=result.state.public_dump())


@router.post("/{game_id}/hover", response_model=HoverResponse)
async def hover(request: HoverRequest, session: GameSession = Depends(deps.get_game_session)):
    object_id = separate_hover(session.snapshot.round.objects, (request.x, request.y))
    return HoverResponse(object_id=object_id)


@router.delete("/{game_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_game(game_id: str):
    await session_service.remove_game(game_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
