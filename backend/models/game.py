from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, timezone
import uuid


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


class Role(str, Enum):
    VILLAGER = "villager"
    WEREWOLF = "werewolf"


class Faction(str, Enum):
    VILLAGERS = "villagers"
    WEREWOLVES = "werewolves"


class Phase(str, Enum):
    ROLE_REVEAL = "role_reveal"
    NIGHT = "night"
    NIGHT_ELIMINATION = "night_elimination"
    DISCUSSION = "discussion"
    TIEBREAK_DISCUSSION = "tiebreak_discussion"
    DAY_ELIMINATION = "day_elimination"
    GAME_OVER = "game_over"


class GameStatus(str, Enum):
    WAITING_FOR_PLAYERS = "waiting_for_players"  # fewer active players than min_players
    READY_TO_START = "ready_to_start"
    IN_PROGRESS = "in_progress"
    ENDED = "ended"


class ParticipationStatus(str, Enum):
    PARTICIPATING = "participating"
    LEFT = "left"        # may rejoin with the same id
    REMOVED = "removed"  # kicked by the moderator; rejoin is refused for good


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_STATE = "invalid_state"
    VALIDATION = "validation"
    REMOVED = "removed"
    FULL = "full"


# Phases in which players signal readiness with "done"
DONE_PHASES = (Phase.ROLE_REVEAL, Phase.DISCUSSION, Phase.TIEBREAK_DISCUSSION)


class PlayerState(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    is_creator: bool = False
    is_moderator: bool = False
    connected: bool = True
    participation: ParticipationStatus = ParticipationStatus.PARTICIPATING
    role: Optional[Role] = None
    eliminated: bool = False
    done: bool = False
    joined_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_active(self) -> bool:
        return self.participation == ParticipationStatus.PARTICIPATING

    @property
    def can_act(self) -> bool:
        """Participating and still alive: may vote, be voted for and mark done."""
        return self.is_active and not self.eliminated


class Vote(BaseModel):
    voter_id: str
    target_id: str


class GameState(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    name: str
    creator_id: str
    min_players: int = 3
    max_players: int = 20
    discussion_minutes: int = 5
    werewolf_count: int = 1
    join_link: str = ""
    qr_code_base64: str = ""
    status: GameStatus = GameStatus.WAITING_FOR_PLAYERS

    # Session state, meaningful once status is IN_PROGRESS
    phase: Phase = Phase.ROLE_REVEAL
    round: int = 0
    phase_ends_at: Optional[datetime] = None
    night_votes: List[Vote] = []
    day_votes: List[Vote] = []
    tiebreak_candidates: List[str] = []
    day_tiebreak_used: bool = False
    last_eliminated_by_night: Optional[str] = None
    last_eliminated_by_day: Optional[str] = None
    winner: Optional[Faction] = None

    version: int = 1
    players: List[PlayerState] = []
    created_at: datetime = Field(default_factory=_utcnow)
    ended_at: Optional[datetime] = None

    def get_player(self, player_id: Optional[str]) -> Optional[PlayerState]:
        if not player_id:
            return None
        for p in self.players:
            if p.id == player_id:
                return p
        return None

    def active_players(self) -> List[PlayerState]:
        return [p for p in self.players if p.is_active]

    def player_name(self, player_id: Optional[str]) -> Optional[str]:
        player = self.get_player(player_id)
        return player.name if player else None

    def bump_version(self) -> int:
        self.version += 1
        return self.version


class ActionResult(BaseModel):
    """Outcome of a store operation. Expected failures are values, not exceptions."""
    success: bool
    message: Optional[str] = None  # failure reason, or an informational note on success
    error_kind: Optional[ErrorKind] = None
    data: Dict[str, Any] = {}

    @classmethod
    def ok(cls, message: Optional[str] = None, **data: Any) -> "ActionResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> "ActionResult":
        return cls(success=False, message=message, error_kind=kind)


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateGameRequest(BaseModel):
    game_name: str = Field(min_length=1, max_length=50)
    creator_name: str = Field(min_length=1, max_length=30)
    max_players: int = Field(default=20, ge=2, le=40)
    frontend_base_url: str = Field(min_length=1)


class CreateGameResponse(BaseModel):
    game_id: str
    player_id: str
    join_link: str
    qr_code_base64: str


class JoinGameRequest(BaseModel):
    display_name: str = Field(min_length=1, max_length=30)
    player_id: Optional[str] = None


class JoinGameResponse(BaseModel):
    player_id: str
    success: bool = True
    message: Optional[str] = None


class PlayerActionRequest(BaseModel):
    player_id: str


class RemovePlayerRequest(BaseModel):
    player_id: str
    moderator_id: str


class UpdateSettingsRequest(BaseModel):
    creator_id: str
    min_players: int = Field(ge=2, le=40)
    max_players: int = Field(ge=2, le=40)
    discussion_minutes: int = Field(default=5, ge=1, le=30)
    werewolf_count: int = Field(default=1, ge=1, le=40)


class UpdateGameNameRequest(BaseModel):
    creator_id: str
    game_name: str = Field(min_length=1, max_length=50)


class UpdatePlayerNameRequest(BaseModel):
    player_id: str
    display_name: str = Field(min_length=1, max_length=30)


class ConnectionRequest(BaseModel):
    player_id: str
    connected: bool


class StartGameRequest(BaseModel):
    creator_id: str


class VoteRequest(BaseModel):
    voter_id: str
    target_id: str


class PlayerRoleResponse(BaseModel):
    role: Role
    fellow_werewolves: List[str] = []


# ── Poll snapshot ─────────────────────────────────────────────────────────────

class GameInfo(BaseModel):
    game_id: str
    game_name: str
    creator_id: str
    creator_name: str
    min_players: int
    max_players: int
    join_link: str
    qr_code_base64: str
    status: GameStatus
    version: int
    discussion_minutes: int
    werewolf_count: int
    phase: Phase
    round: int
    phase_ends_at: Optional[datetime] = None
    last_eliminated_by_night: Optional[str] = None
    last_eliminated_by_night_name: Optional[str] = None
    last_eliminated_by_day: Optional[str] = None
    last_eliminated_by_day_name: Optional[str] = None
    winner: Optional[Faction] = None
    tiebreak_candidates: List[str] = []
    poll_interval_ms: int


class PlayerView(BaseModel):
    player_id: str
    display_name: str
    is_creator: bool
    is_moderator: bool
    connected: bool
    participation: ParticipationStatus
    role: Optional[Role] = None  # only revealed for eliminated players or after game end
    eliminated: bool
    done: bool
    joined_at: datetime


class LobbyState(BaseModel):
    game: GameInfo
    players: List[PlayerView]
    has_duplicate_names: bool = False
