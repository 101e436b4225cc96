import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import Callable, Dict, Iterator, List, Optional

from agents.game_master import Clock, GameMaster, PhaseTimings
from agents.role_assigner import RoleAssigner, role_assigner as default_role_assigner
from config import settings
from models.game import (
    ActionResult, ErrorKind, GameState, GameStatus, ParticipationStatus, PlayerState,
)
from utils.qr import qr_png_base64

logger = logging.getLogger(__name__)

MAX_GAME_NAME = 50
MAX_DISPLAY_NAME = 30
PLAYER_LIMITS = (2, 40)
DISCUSSION_MINUTES_LIMITS = (1, 30)


def _clean_name(value: Optional[str], max_length: int) -> Optional[str]:
    """Stripped name, or None when empty or too long."""
    cleaned = (value or "").strip()
    if not cleaned or len(cleaned) > max_length:
        return None
    return cleaned


class GameStore:
    """
    In-memory session store.

    Owns the game map (guarded by a map-level lock for lookup, insertion and
    purge) and one re-entrant lock per game. Every mutation of a game runs
    under that game's lock, so transitions of one game are serialized while
    different games proceed in parallel.

    Phase deadlines are evaluated lazily: nothing runs in the background.
    Callers (the poll endpoint, or an external cron) invoke
    try_advance_if_expired(); a phase therefore ends at the first call after
    its deadline, which with 1 s polling is at most about a second late.
    """

    def __init__(
        self,
        timings: Optional[PhaseTimings] = None,
        clock: Optional[Clock] = None,
        retention_sec: Optional[int] = None,
        role_assigner: Optional[RoleAssigner] = None,
        qr_encoder: Callable[[str], str] = qr_png_base64,
    ):
        self.game_master = GameMaster(timings=timings, clock=clock)
        self.clock = self.game_master.clock
        self.retention_sec = retention_sec
        self.role_assigner = role_assigner or default_role_assigner
        self._qr_encoder = qr_encoder
        self._games: Dict[str, GameState] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._map_lock = threading.Lock()

    # ── Map helpers ───────────────────────────────────────────────────────────

    def get_game(self, game_id: str) -> Optional[GameState]:
        with self._map_lock:
            return self._games.get(game_id)

    def game_ids(self) -> List[str]:
        with self._map_lock:
            return list(self._games)

    def _lock_for(self, game_id: str) -> threading.RLock:
        with self._map_lock:
            lock = self._locks.get(game_id)
            if lock is None:
                lock = self._locks[game_id] = threading.RLock()
            return lock

    @contextmanager
    def locked(self, game_id: str) -> Iterator[Optional[GameState]]:
        """Hold the game's lock; yields None when the game does not exist."""
        game = self.get_game(game_id)
        if game is None:
            yield None
            return
        with self._lock_for(game_id):
            yield game

    @staticmethod
    def _new_game_id() -> str:
        # Uniqueness is checked when the id is reserved under the map lock
        return uuid.uuid4().hex[: settings.game_id_length]

    @staticmethod
    def _recalculate_status(game: GameState) -> None:
        """Lobby status follows the active player count; frozen once the game starts."""
        if game.status not in (GameStatus.WAITING_FOR_PLAYERS, GameStatus.READY_TO_START):
            return
        active = len(game.active_players())
        game.status = (
            GameStatus.READY_TO_START if active >= game.min_players else GameStatus.WAITING_FOR_PLAYERS
        )

    @staticmethod
    def has_duplicate_names(game: GameState) -> bool:
        names = [p.name.casefold() for p in game.active_players()]
        return len(names) != len(set(names))

    # ── Lobby ─────────────────────────────────────────────────────────────────

    def create_game(
        self, name: str, creator_name: str, max_players: int, base_url: str
    ) -> ActionResult:
        """Create a game with the creator as its only participant. data: {"game"}"""
        game_name = _clean_name(name, MAX_GAME_NAME)
        if game_name is None:
            return ActionResult.fail(ErrorKind.VALIDATION, f"Game name must be 1-{MAX_GAME_NAME} characters")
        display_name = _clean_name(creator_name, MAX_DISPLAY_NAME)
        if display_name is None:
            return ActionResult.fail(ErrorKind.VALIDATION, f"Name must be 1-{MAX_DISPLAY_NAME} characters")
        low, high = PLAYER_LIMITS
        if not low <= max_players <= high:
            return ActionResult.fail(ErrorKind.VALIDATION, f"Max players must be between {low} and {high}")

        if self.retention_sec is not None:
            self.purge_finished_games()

        creator = PlayerState(name=display_name, is_creator=True, is_moderator=True)
        while True:
            # QR rendering stays outside the map lock; only the id reservation needs it
            game_id = self._new_game_id()
            join_link = f"{base_url.rstrip('/')}/game/{game_id}"
            game = GameState(
                id=game_id,
                name=game_name,
                creator_id=creator.id,
                min_players=min(settings.default_min_players, max_players),
                max_players=max_players,
                discussion_minutes=settings.default_discussion_minutes,
                werewolf_count=settings.default_werewolf_count,
                join_link=join_link,
                qr_code_base64=self._qr_encoder(join_link),
                players=[creator],
                created_at=self.clock(),
            )
            self._recalculate_status(game)
            with self._map_lock:
                if game_id in self._games:
                    logger.debug(f"[{game_id}] Game id collision, retrying")
                    continue
                self._games[game_id] = game
                self._locks[game_id] = threading.RLock()
            break

        logger.info(f"[{game_id}] Game '{game_name}' created by {display_name} ({creator.id})")
        return ActionResult.ok(game=game)

    def join_game(
        self, game_id: str, display_name: str, player_id: Optional[str] = None
    ) -> ActionResult:
        """Join as a new player, or rejoin with a known id. data: {"player"}"""
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")

            existing = game.get_player(player_id)
            if existing is not None:
                if existing.participation == ParticipationStatus.REMOVED:
                    return ActionResult.fail(ErrorKind.REMOVED, "You were removed from this game")
                existing.participation = ParticipationStatus.PARTICIPATING
                existing.connected = True
                self._recalculate_status(game)
                game.bump_version()
                logger.info(f"[{game_id}] Player rejoined: {existing.id} ({existing.name})")
                return ActionResult.ok("Rejoined successfully", player=existing)

            if game.status in (GameStatus.IN_PROGRESS, GameStatus.ENDED):
                return ActionResult.fail(ErrorKind.INVALID_STATE, "Game has already started")

            name = _clean_name(display_name, MAX_DISPLAY_NAME)
            if name is None:
                return ActionResult.fail(ErrorKind.VALIDATION, f"Name must be 1-{MAX_DISPLAY_NAME} characters")

            active = len(game.active_players())
            if active >= game.max_players:
                return ActionResult.fail(ErrorKind.FULL, f"Game is full ({active}/{game.max_players})")

            player = PlayerState(name=name, joined_at=self.clock())
            game.players.append(player)
            self._recalculate_status(game)
            game.bump_version()
            logger.info(f"[{game_id}] Player joined: {player.id} ({name})")
            return ActionResult.ok(player=player)

    def leave_game(self, game_id: str, player_id: str) -> ActionResult:
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")
            player = game.get_player(player_id)
            if player is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Player not found")
            if player.participation == ParticipationStatus.REMOVED:
                return ActionResult.fail(ErrorKind.REMOVED, "Player was removed from this game")

            player.participation = ParticipationStatus.LEFT
            player.connected = False
            self._recalculate_status(game)
            game.bump_version()
            logger.info(f"[{game_id}] Player left: {player_id}")
            return ActionResult.ok()

    def remove_player(self, game_id: str, player_id: str, moderator_id: str) -> ActionResult:
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")
            moderator = game.get_player(moderator_id)
            if moderator is None or not moderator.is_moderator:
                return ActionResult.fail(ErrorKind.UNAUTHORIZED, "Only a moderator can remove players")
            player = game.get_player(player_id)
            if player is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Player not found")
            if player.is_creator:
                return ActionResult.fail(ErrorKind.UNAUTHORIZED, "The creator cannot be removed")

            player.participation = ParticipationStatus.REMOVED
            player.connected = False
            self._recalculate_status(game)
            game.bump_version()
            logger.info(f"[{game_id}] Player removed: {player_id} by {moderator_id}")
            return ActionResult.ok()

    def update_settings(
        self,
        game_id: str,
        creator_id: str,
        min_players: int,
        max_players: int,
        discussion_minutes: int,
        werewolf_count: int,
    ) -> ActionResult:
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")
            if game.creator_id != creator_id:
                return ActionResult.fail(ErrorKind.UNAUTHORIZED, "Only the creator can update settings")
            if game.status in (GameStatus.IN_PROGRESS, GameStatus.ENDED):
                return ActionResult.fail(ErrorKind.INVALID_STATE, "Settings are locked once the game starts")

            low, high = PLAYER_LIMITS
            if not (low <= min_players <= high and low <= max_players <= high):
                return ActionResult.fail(ErrorKind.VALIDATION, f"Player limits must be between {low} and {high}")
            if min_players > max_players:
                return ActionResult.fail(ErrorKind.VALIDATION, "Minimum players cannot exceed maximum players")
            low, high = DISCUSSION_MINUTES_LIMITS
            if not low <= discussion_minutes <= high:
                return ActionResult.fail(
                    ErrorKind.VALIDATION, f"Discussion duration must be between {low} and {high} minutes"
                )
            if not 1 <= werewolf_count < max_players:
                return ActionResult.fail(
                    ErrorKind.VALIDATION, "Werewolf count must be at least 1 and below the maximum players"
                )

            game.min_players = min_players
            game.max_players = max_players
            game.discussion_minutes = discussion_minutes
            game.werewolf_count = werewolf_count
            self._recalculate_status(game)
            game.bump_version()
            logger.info(
                f"[{game_id}] Settings updated: players {min_players}-{max_players}, "
                f"discussion {discussion_minutes} min, {werewolf_count} werewolves"
            )
            return ActionResult.ok()

    def rename_game(self, game_id: str, creator_id: str, name: str) -> ActionResult:
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")
            if game.creator_id != creator_id:
                return ActionResult.fail(ErrorKind.UNAUTHORIZED, "Only the creator can rename the game")
            game_name = _clean_name(name, MAX_GAME_NAME)
            if game_name is None:
                return ActionResult.fail(ErrorKind.VALIDATION, f"Game name must be 1-{MAX_GAME_NAME} characters")
            game.name = game_name
            game.bump_version()
            logger.info(f"[{game_id}] Game renamed to '{game_name}'")
            return ActionResult.ok()

    def rename_player(self, game_id: str, player_id: str, display_name: str) -> ActionResult:
        """Players rename themselves, and only before the game starts."""
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")
            if game.status in (GameStatus.IN_PROGRESS, GameStatus.ENDED):
                return ActionResult.fail(ErrorKind.INVALID_STATE, "Names are locked once the game starts")
            player = game.get_player(player_id)
            if player is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Player not found")
            name = _clean_name(display_name, MAX_DISPLAY_NAME)
            if name is None:
                return ActionResult.fail(ErrorKind.VALIDATION, f"Name must be 1-{MAX_DISPLAY_NAME} characters")
            player.name = name
            game.bump_version()
            logger.info(f"[{game_id}] Player {player_id} renamed to {name}")
            return ActionResult.ok()

    def set_connected(self, game_id: str, player_id: str, connected: bool) -> ActionResult:
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")
            player = game.get_player(player_id)
            if player is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Player not found")
            if player.connected != connected:
                player.connected = connected
                game.bump_version()
            return ActionResult.ok()

    # ── Game session ──────────────────────────────────────────────────────────

    def start_game(self, game_id: str, creator_id: str) -> ActionResult:
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")
            if game.creator_id != creator_id:
                return ActionResult.fail(ErrorKind.UNAUTHORIZED, "Only the creator can start the game")
            if game.status != GameStatus.READY_TO_START:
                return ActionResult.fail(ErrorKind.INVALID_STATE, "Not enough players to start")
            if self.has_duplicate_names(game):
                return ActionResult.fail(ErrorKind.VALIDATION, "Players must have unique names before starting")
            reason = self.role_assigner.validate(len(game.active_players()), game.werewolf_count)
            if reason:
                return ActionResult.fail(ErrorKind.VALIDATION, reason)

            self.role_assigner.assign_roles(game)
            self.game_master.start(game)
            return ActionResult.ok()

    def mark_done(self, game_id: str, player_id: str) -> ActionResult:
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")
            return self.game_master.mark_done(game, player_id)

    def cast_vote(self, game_id: str, voter_id: str, target_id: str) -> ActionResult:
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")
            return self.game_master.cast_vote(game, voter_id, target_id)

    def force_advance(self, game_id: str, creator_id: str) -> ActionResult:
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")
            if game.creator_id != creator_id:
                return ActionResult.fail(ErrorKind.UNAUTHORIZED, "Only the creator can force advance")
            if game.status != GameStatus.IN_PROGRESS:
                return ActionResult.fail(ErrorKind.INVALID_STATE, "Game is not in progress")
            phase = self.game_master.advance(game)
            return ActionResult.ok(phase=phase)

    def try_advance_if_expired(self, game_id: str) -> bool:
        """
        Advance the game if its phase deadline has passed. Returns True if it did.

        The expiry is re-checked under the lock, so two racing callers (e.g.
        simultaneous polls) advance an expired phase only once.
        """
        game = self.get_game(game_id)
        if game is None or not self.game_master.is_expired(game):
            return False
        with self._lock_for(game_id):
            if not self.game_master.is_expired(game):
                return False
            logger.info(f"[{game_id}] Phase {game.phase.value} expired")
            self.game_master.advance(game)
            return True

    def get_role(self, game_id: str, player_id: str) -> ActionResult:
        """data: {"role", "fellow_werewolves"}"""
        with self.locked(game_id) as game:
            if game is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Game not found")
            if game.status not in (GameStatus.IN_PROGRESS, GameStatus.ENDED):
                return ActionResult.fail(ErrorKind.INVALID_STATE, "Game has not started")
            player = game.get_player(player_id)
            if player is None or player.role is None:
                return ActionResult.fail(ErrorKind.NOT_FOUND, "Player has no role in this game")
            return ActionResult.ok(
                role=player.role,
                fellow_werewolves=self.game_master.fellow_werewolves(game, player_id),
            )

    # ── Retention ─────────────────────────────────────────────────────────────

    def purge_finished_games(self) -> int:
        """Drop ended games past the retention window. Returns how many were dropped."""
        if self.retention_sec is None:
            return 0
        cutoff = self.clock() - timedelta(seconds=self.retention_sec)
        with self._map_lock:
            expired = [
                gid for gid, g in self._games.items()
                if g.status == GameStatus.ENDED and g.ended_at is not None and g.ended_at <= cutoff
            ]
            for gid in expired:
                del self._games[gid]
                self._locks.pop(gid, None)
        if expired:
            logger.info(f"Purged {len(expired)} finished games: {expired}")
        return len(expired)


_game_store: Optional[GameStore] = None


def get_game_store() -> GameStore:
    """Lazy singleton, created on first call, not at import time.
    Use as a FastAPI dependency: Depends(get_game_store)
    """
    global _game_store
    if _game_store is None:
        _game_store = GameStore(retention_sec=settings.finished_game_retention_sec)
    return _game_store
