"""
State Sync: the read side used by polling clients.

A client sends the last version it rendered. If nothing changed since, the
answer is "unchanged" (HTTP 204, no body) and the client simply polls again.
Otherwise it gets a full snapshot. Before reading, the poll gives the game a
chance to leave an expired phase, so polling alone drives timed transitions.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from config import settings
from models.game import GameInfo, GameState, GameStatus, LobbyState, PlayerView
from services.game_store import GameStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    found: bool
    unchanged: bool = False
    state: Optional[LobbyState] = None

    @classmethod
    def not_found(cls) -> "SyncResult":
        return cls(found=False)


def _player_view(game: GameState, player) -> PlayerView:
    # Roles stay secret until a player is out or the game is over
    reveal = player.eliminated or game.status == GameStatus.ENDED
    return PlayerView(
        player_id=player.id,
        display_name=player.name,
        is_creator=player.is_creator,
        is_moderator=player.is_moderator,
        connected=player.connected,
        participation=player.participation,
        role=player.role if reveal else None,
        eliminated=player.eliminated,
        done=player.done,
        joined_at=player.joined_at,
    )


def build_lobby_state(game: GameState) -> LobbyState:
    """
    Full snapshot of a game. Caller should hold the game's lock.
    Creator and eliminated-player names are looked up from the participant
    list every time, so a rename shows up on the next poll.
    """
    info = GameInfo(
        game_id=game.id,
        game_name=game.name,
        creator_id=game.creator_id,
        creator_name=game.player_name(game.creator_id) or "Unknown",
        min_players=game.min_players,
        max_players=game.max_players,
        join_link=game.join_link,
        qr_code_base64=game.qr_code_base64,
        status=game.status,
        version=game.version,
        discussion_minutes=game.discussion_minutes,
        werewolf_count=game.werewolf_count,
        phase=game.phase,
        round=game.round,
        phase_ends_at=game.phase_ends_at,
        last_eliminated_by_night=game.last_eliminated_by_night,
        last_eliminated_by_night_name=game.player_name(game.last_eliminated_by_night),
        last_eliminated_by_day=game.last_eliminated_by_day,
        last_eliminated_by_day_name=game.player_name(game.last_eliminated_by_day),
        winner=game.winner,
        tiebreak_candidates=list(game.tiebreak_candidates),
        poll_interval_ms=settings.poll_interval_ms,
    )
    return LobbyState(
        game=info,
        players=[_player_view(game, p) for p in game.players],
        has_duplicate_names=GameStore.has_duplicate_names(game),
    )


def read_state(store: GameStore, game_id: str, client_version: Optional[int] = None) -> SyncResult:
    """Snapshot of the game, or `unchanged` when client_version is current."""
    store.try_advance_if_expired(game_id)

    with store.locked(game_id) as game:
        if game is None:
            return SyncResult.not_found()
        if client_version is not None and client_version == game.version:
            return SyncResult(found=True, unchanged=True)
        return SyncResult(found=True, state=build_lobby_state(game))
