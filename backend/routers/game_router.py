"""
Game HTTP endpoints.

Routes:
  POST /api/games                           Create game, creator becomes first player
  POST /api/games/{game_id}/join            Join (or rejoin with a known player id)
  GET  /api/games/{game_id}?version=N       Poll: snapshot, or 204 if version N is current
  POST /api/games/{game_id}/leave           Player leaves (may rejoin later)
  POST /api/games/{game_id}/remove          Moderator removes a player for good
  POST /api/games/{game_id}/settings        Creator updates lobby settings
  POST /api/games/{game_id}/name            Creator renames the game
  POST /api/games/{game_id}/player-name     Player renames themselves (lobby only)
  POST /api/games/{game_id}/connection      Soft connected/disconnected flag
  POST /api/games/{game_id}/start           Creator starts the game (roles dealt)
  POST /api/games/{game_id}/done            Player is ready to move on
  POST /api/games/{game_id}/vote            Night kill vote or day elimination vote
  POST /api/games/{game_id}/force-advance   Creator skips to the next phase
  GET  /api/games/{game_id}/role            Private role (+ fellow werewolves at night)
"""
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from models.game import (
    ActionResult, ErrorKind, LobbyState,
    ConnectionRequest, CreateGameRequest, CreateGameResponse,
    JoinGameRequest, JoinGameResponse, PlayerActionRequest, PlayerRoleResponse,
    RemovePlayerRequest, StartGameRequest, UpdateGameNameRequest,
    UpdatePlayerNameRequest, UpdateSettingsRequest, VoteRequest,
)
from services.game_store import GameStore, get_game_store
from services.state_sync import read_state

logger = logging.getLogger(__name__)

router = APIRouter(tags=["games"])

_STATUS_FOR_ERROR: Dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.REMOVED: 403,
    ErrorKind.FULL: 409,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.VALIDATION: 400,
}


def _ensure_success(result: ActionResult) -> ActionResult:
    """Turn a failed store result into the matching HTTP error."""
    if not result.success:
        status = _STATUS_FOR_ERROR.get(result.error_kind, 400)
        raise HTTPException(status_code=status, detail=result.message or "Request failed")
    return result


def _ok(result: ActionResult) -> Dict[str, object]:
    _ensure_success(result)
    return {"success": True, "message": result.message}


@router.post("/games", response_model=CreateGameResponse, status_code=201)
async def create_game(body: CreateGameRequest, store: GameStore = Depends(get_game_store)):
    """Create a new game and register the creator as the first player."""
    result = _ensure_success(store.create_game(
        body.game_name, body.creator_name, body.max_players, body.frontend_base_url,
    ))
    game = result.data["game"]
    return CreateGameResponse(
        game_id=game.id,
        player_id=game.creator_id,
        join_link=game.join_link,
        qr_code_base64=game.qr_code_base64,
    )


@router.post("/games/{game_id}/join", response_model=JoinGameResponse)
async def join_game(game_id: str, body: JoinGameRequest, store: GameStore = Depends(get_game_store)):
    result = _ensure_success(store.join_game(game_id, body.display_name, body.player_id))
    return JoinGameResponse(player_id=result.data["player"].id, message=result.message)


@router.get(
    "/games/{game_id}",
    response_model=LobbyState,
    responses={204: {"description": "Client version is current; keep polling"}},
)
async def get_game_state(
    game_id: str,
    version: Optional[int] = Query(default=None),
    store: GameStore = Depends(get_game_store),
):
    """
    Poll endpoint. Also the trigger for timed phase changes: an expired phase
    is advanced here before the state is read.
    """
    result = read_state(store, game_id, version)
    if not result.found:
        raise HTTPException(status_code=404, detail="Game not found")
    if result.unchanged:
        return Response(status_code=204)
    return result.state


@router.post("/games/{game_id}/leave")
async def leave_game(game_id: str, body: PlayerActionRequest, store: GameStore = Depends(get_game_store)):
    return _ok(store.leave_game(game_id, body.player_id))


@router.post("/games/{game_id}/remove")
async def remove_player(game_id: str, body: RemovePlayerRequest, store: GameStore = Depends(get_game_store)):
    return _ok(store.remove_player(game_id, body.player_id, body.moderator_id))


@router.post("/games/{game_id}/settings")
async def update_settings(game_id: str, body: UpdateSettingsRequest, store: GameStore = Depends(get_game_store)):
    return _ok(store.update_settings(
        game_id,
        body.creator_id,
        min_players=body.min_players,
        max_players=body.max_players,
        discussion_minutes=body.discussion_minutes,
        werewolf_count=body.werewolf_count,
    ))


@router.post("/games/{game_id}/name")
async def rename_game(game_id: str, body: UpdateGameNameRequest, store: GameStore = Depends(get_game_store)):
    return _ok(store.rename_game(game_id, body.creator_id, body.game_name))


@router.post("/games/{game_id}/player-name")
async def rename_player(game_id: str, body: UpdatePlayerNameRequest, store: GameStore = Depends(get_game_store)):
    return _ok(store.rename_player(game_id, body.player_id, body.display_name))


@router.post("/games/{game_id}/connection")
async def set_connection(game_id: str, body: ConnectionRequest, store: GameStore = Depends(get_game_store)):
    return _ok(store.set_connected(game_id, body.player_id, body.connected))


@router.post("/games/{game_id}/start")
async def start_game(game_id: str, body: StartGameRequest, store: GameStore = Depends(get_game_store)):
    """Creator starts the game: roles are dealt and role reveal begins."""
    return _ok(store.start_game(game_id, body.creator_id))


@router.post("/games/{game_id}/done")
async def mark_done(game_id: str, body: PlayerActionRequest, store: GameStore = Depends(get_game_store)):
    return _ok(store.mark_done(game_id, body.player_id))


@router.post("/games/{game_id}/vote")
async def cast_vote(game_id: str, body: VoteRequest, store: GameStore = Depends(get_game_store)):
    return _ok(store.cast_vote(game_id, body.voter_id, body.target_id))


@router.post("/games/{game_id}/force-advance")
async def force_advance(game_id: str, body: PlayerActionRequest, store: GameStore = Depends(get_game_store)):
    result = store.force_advance(game_id, body.player_id)
    if result.success:
        logger.info(f"[{game_id}] Creator forced advance to {result.data['phase'].value}")
    return _ok(result)


@router.get("/games/{game_id}/role", response_model=PlayerRoleResponse)
async def get_role(
    game_id: str,
    player_id: str = Query(...),
    store: GameStore = Depends(get_game_store),
):
    """Private role lookup. Fellow werewolves are only listed during the night."""
    result = _ensure_success(store.get_role(game_id, player_id))
    return PlayerRoleResponse(
        role=result.data["role"],
        fellow_werewolves=result.data["fellow_werewolves"],
    )
