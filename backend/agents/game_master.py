"""
Game Master: the phase engine. Pure deterministic Python, operates on an
in-memory GameState handed to it by the Session Store.

Responsibilities:
- Phase transitions
    role_reveal → night → (night_elimination →) discussion
    → (tiebreak_discussion →) day_elimination → night (next round) … → game_over
- Vote validation (night: alive werewolves from round 2, day: alive players,
  tiebreak: tied candidates only)
- Night kill and day elimination resolution via the Vote Tally
- Win checks via the Win Evaluator, right after an elimination is applied
- Version bumps: every accepted call bumps the version exactly once

The caller must hold the game's lock. Nothing here locks or schedules: phase
deadlines are only stored, and the store decides when to look at them.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from config import settings
from models.game import (
    ActionResult, DONE_PHASES, ErrorKind, GameState, GameStatus, Phase, Role, Vote,
)
from agents.vote_tally import resolve_night_kill, tally_votes
from agents.win_condition import evaluate_winner

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PhaseTimings:
    night_sec: int = 30
    tiebreak_sec: int = 60
    elimination_display_sec: int = 10

    @classmethod
    def from_settings(cls) -> "PhaseTimings":
        return cls(
            night_sec=settings.night_duration_sec,
            tiebreak_sec=settings.tiebreak_duration_sec,
            elimination_display_sec=settings.elimination_display_sec,
        )


class GameMaster:
    """
    Deterministic phase engine.
    All methods mutate the GameState they are given.
    """

    def __init__(self, timings: Optional[PhaseTimings] = None, clock: Optional[Clock] = None):
        self.timings = timings or PhaseTimings.from_settings()
        self.clock = clock or _utcnow

    # ── Game start ─────────────────────────────────────────────────────────────

    def start(self, game: GameState) -> None:
        """Reset all per-round state after roles are dealt and open role reveal."""
        for p in game.players:
            p.done = False
            p.eliminated = False

        game.status = GameStatus.IN_PROGRESS
        game.phase = Phase.ROLE_REVEAL
        game.round = 1
        game.phase_ends_at = None
        game.night_votes = []
        game.day_votes = []
        game.tiebreak_candidates = []
        game.day_tiebreak_used = False
        game.last_eliminated_by_night = None
        game.last_eliminated_by_day = None
        game.winner = None
        game.ended_at = None
        game.bump_version()
        logger.info(f"[{game.id}] Game started with {len(game.active_players())} players")

    # ── Phase transitions ──────────────────────────────────────────────────────

    def advance(self, game: GameState) -> Phase:
        """
        Move the game to its next phase. Returns the new phase.

        Night in round 1 skips night_elimination (no kill on the first night).
        A winner found during an elimination phase only ends the game on the
        following advance, so the announcement is shown first.
        game_over is terminal: advancing it is a no-op without a version bump.
        """
        current = game.phase
        if current == Phase.GAME_OVER:
            return current

        if current == Phase.ROLE_REVEAL:
            self._enter_night(game)

        elif current == Phase.NIGHT:
            if game.round == 1:
                self._enter_discussion(game)
            else:
                self._resolve_night(game)

        elif current == Phase.NIGHT_ELIMINATION:
            if not self._end_if_won(game):
                self._enter_discussion(game)

        elif current == Phase.DISCUSSION:
            result = tally_votes(self._counted_day_votes(game))
            if result.is_tie and not game.day_tiebreak_used:
                self._enter_tiebreak(game, result.tied)
            else:
                # A tie after the tiebreak was already used leaves winner=None
                self._finalize_day_elimination(game, result.winner)

        elif current == Phase.TIEBREAK_DISCUSSION:
            result = tally_votes(self._counted_day_votes(game))
            self._finalize_day_elimination(game, None if result.is_tie else result.winner)

        elif current == Phase.DAY_ELIMINATION:
            if not self._end_if_won(game):
                game.round += 1
                self._enter_night(game)

        logger.info(f"[{game.id}] Phase: {current.value} → {game.phase.value} (round {game.round})")
        return game.phase

    def is_expired(self, game: GameState, now: Optional[datetime] = None) -> bool:
        """True when the game is running and its phase deadline has passed."""
        if game.status != GameStatus.IN_PROGRESS or game.phase_ends_at is None:
            return False
        return (now or self.clock()) >= game.phase_ends_at

    def _deadline(self, seconds: float) -> datetime:
        return self.clock() + timedelta(seconds=seconds)

    def _reset_done(self, game: GameState) -> None:
        for p in game.players:
            p.done = False

    def _enter_night(self, game: GameState) -> None:
        game.phase = Phase.NIGHT
        game.phase_ends_at = self._deadline(self.timings.night_sec)
        game.night_votes = []
        game.last_eliminated_by_night = None
        game.day_tiebreak_used = False
        game.tiebreak_candidates = []
        self._reset_done(game)
        game.bump_version()

    def _enter_discussion(self, game: GameState) -> None:
        game.phase = Phase.DISCUSSION
        game.phase_ends_at = self._deadline(game.discussion_minutes * 60)
        game.day_votes = []
        game.last_eliminated_by_day = None
        game.day_tiebreak_used = False
        game.tiebreak_candidates = []
        self._reset_done(game)
        game.bump_version()

    def _enter_tiebreak(self, game: GameState, tied: List[str]) -> None:
        game.phase = Phase.TIEBREAK_DISCUSSION
        game.tiebreak_candidates = list(tied)
        game.day_tiebreak_used = True
        game.day_votes = []
        game.phase_ends_at = self._deadline(self.timings.tiebreak_sec)
        self._reset_done(game)
        game.bump_version()
        logger.info(f"[{game.id}] Day vote tied between {tied}, tiebreak discussion")

    def _resolve_night(self, game: GameState) -> None:
        killed = resolve_night_kill(self._counted_night_votes(game))
        game.last_eliminated_by_night = killed
        if killed:
            self._eliminate(game, killed)
            logger.info(f"[{game.id}] Night kill: {killed}")
        else:
            logger.info(f"[{game.id}] Night passed without a kill")
        game.phase = Phase.NIGHT_ELIMINATION
        game.phase_ends_at = self._deadline(self.timings.elimination_display_sec)
        self._check_winner(game)
        self._reset_done(game)
        game.bump_version()

    def _finalize_day_elimination(self, game: GameState, eliminated_id: Optional[str]) -> None:
        game.last_eliminated_by_day = eliminated_id
        if eliminated_id:
            self._eliminate(game, eliminated_id)
        game.phase = Phase.DAY_ELIMINATION
        game.phase_ends_at = self._deadline(self.timings.elimination_display_sec)
        self._check_winner(game)
        self._reset_done(game)
        game.bump_version()
        logger.info(
            f"[{game.id}] Day elimination: {eliminated_id or 'none'} "
            f"(winner: {game.winner.value if game.winner else 'none'})"
        )

    def _eliminate(self, game: GameState, player_id: str) -> None:
        player = game.get_player(player_id)
        if player is None:
            raise ValueError(f"Game {game.id}: elimination target {player_id} is not a participant")
        player.eliminated = True

    def _check_winner(self, game: GameState) -> None:
        # Winner is set once; the evaluator never runs again afterwards
        if game.winner is not None:
            return
        game.winner = evaluate_winner(game.players)
        if game.winner:
            logger.info(f"[{game.id}] Winner decided: {game.winner.value}")

    def _end_if_won(self, game: GameState) -> bool:
        if game.winner is None:
            return False
        game.phase = Phase.GAME_OVER
        game.phase_ends_at = None
        game.status = GameStatus.ENDED
        game.ended_at = self.clock()
        # Must bump so polling clients see the game end
        game.bump_version()
        return True

    # ── Votes ──────────────────────────────────────────────────────────────────

    def _counted_night_votes(self, game: GameState) -> List[Vote]:
        counted = []
        for v in game.night_votes:
            voter = game.get_player(v.voter_id)
            target = game.get_player(v.target_id)
            if voter and target and voter.can_act and voter.role == Role.WEREWOLF and target.can_act:
                counted.append(v)
        return counted

    def _counted_day_votes(self, game: GameState) -> List[Vote]:
        counted = []
        for v in game.day_votes:
            voter = game.get_player(v.voter_id)
            target = game.get_player(v.target_id)
            if not (voter and target and voter.can_act and target.can_act):
                continue
            if game.phase == Phase.TIEBREAK_DISCUSSION and v.target_id not in game.tiebreak_candidates:
                continue
            counted.append(v)
        return counted

    def cast_vote(self, game: GameState, voter_id: str, target_id: str) -> ActionResult:
        """
        Record (or replace) a vote in the current voting window.

        night:               alive werewolves only, and never in round 1
        discussion:          any alive participant
        tiebreak_discussion: any alive participant, tied candidates only
        """
        if game.status != GameStatus.IN_PROGRESS:
            return ActionResult.fail(ErrorKind.INVALID_STATE, "Game is not in progress")

        voter = game.get_player(voter_id)
        if voter is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, "Voter not found")
        target = game.get_player(target_id)
        if target is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, "Target not found")
        if not voter.is_active:
            return ActionResult.fail(ErrorKind.INVALID_STATE, "Voter is no longer in the game")

        if game.phase == Phase.NIGHT:
            if game.round == 1:
                return ActionResult.fail(ErrorKind.INVALID_STATE, "No kill on the first night")
            if voter.role != Role.WEREWOLF or voter.eliminated:
                return ActionResult.fail(ErrorKind.UNAUTHORIZED, "Only alive werewolves can vote at night")
            if not target.can_act:
                return ActionResult.fail(ErrorKind.VALIDATION, "Target is not an alive participant")
            game.night_votes = [v for v in game.night_votes if v.voter_id != voter_id]
            game.night_votes.append(Vote(voter_id=voter_id, target_id=target_id))

        elif game.phase in (Phase.DISCUSSION, Phase.TIEBREAK_DISCUSSION):
            if voter.eliminated:
                return ActionResult.fail(ErrorKind.UNAUTHORIZED, "Eliminated players cannot vote")
            if not target.can_act:
                return ActionResult.fail(ErrorKind.VALIDATION, "Target is not an alive participant")
            if game.phase == Phase.TIEBREAK_DISCUSSION and target_id not in game.tiebreak_candidates:
                return ActionResult.fail(ErrorKind.VALIDATION, "Can only vote for tied candidates in tiebreak")
            game.day_votes = [v for v in game.day_votes if v.voter_id != voter_id]
            game.day_votes.append(Vote(voter_id=voter_id, target_id=target_id))

        else:
            return ActionResult.fail(ErrorKind.INVALID_STATE, "Voting is not open in this phase")

        game.bump_version()
        return ActionResult.ok()

    # ── Readiness ──────────────────────────────────────────────────────────────

    def mark_done(self, game: GameState, player_id: str) -> ActionResult:
        """
        Mark a player ready in role_reveal, discussion or tiebreak_discussion.
        When the last eligible player is done the phase advances in the same
        call; the call still bumps the version only once.
        """
        if game.status != GameStatus.IN_PROGRESS:
            return ActionResult.fail(ErrorKind.INVALID_STATE, "Game is not in progress")

        player = game.get_player(player_id)
        if player is None:
            return ActionResult.fail(ErrorKind.NOT_FOUND, "Player not found")
        if game.phase not in DONE_PHASES:
            return ActionResult.fail(ErrorKind.INVALID_STATE, "Nothing to confirm in this phase")
        if not player.can_act:
            return ActionResult.fail(ErrorKind.INVALID_STATE, "Only alive participants can mark done")
        already_done = player.done
        player.done = True
        # Checked on every call: a leave or removal can complete the phase
        if all(p.done for p in game.players if p.can_act):
            self.advance(game)
            return ActionResult.ok(advanced=True)
        if already_done:
            return ActionResult.ok("Already marked done", advanced=False)

        game.bump_version()
        return ActionResult.ok(advanced=False)

    # ── Role info ──────────────────────────────────────────────────────────────

    def fellow_werewolves(self, game: GameState, player_id: str) -> List[str]:
        """Names of the other alive werewolves; only shared during the night."""
        player = game.get_player(player_id)
        if player is None or player.role != Role.WEREWOLF or game.phase != Phase.NIGHT:
            return []
        return [
            p.name for p in game.players
            if p.role == Role.WEREWOLF and p.id != player_id and p.can_act
        ]
