"""
Vote Tally: pure vote counting shared by night and day resolution.

No state, no I/O. The Game Master decides what a tie means for its phase:
  - Night: a tie (or no votes) is simply "no kill".
  - Day: the first tie escalates to a tiebreak discussion, a second tie
    means nobody is eliminated.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from models.game import Vote


@dataclass(frozen=True)
class TallyResult:
    winner: Optional[str] = None
    is_tie: bool = False
    tied: List[str] = field(default_factory=list)  # first-seen order
    counts: Dict[str, int] = field(default_factory=dict)


def latest_votes(votes: Iterable[Vote]) -> List[Vote]:
    """Keep only each voter's most recent vote, in the order of those votes."""
    by_voter: Dict[str, Vote] = {}
    for vote in votes:
        by_voter.pop(vote.voter_id, None)
        by_voter[vote.voter_id] = vote
    return list(by_voter.values())


def tally_votes(votes: Iterable[Vote]) -> TallyResult:
    """
    Count votes per target.

    Returns a TallyResult with:
      - winner: the single target holding the most votes, else None
      - is_tie: True when two or more targets share the top count
      - tied:   the tied target ids (deterministic: first-seen order)
      - counts: {target_id: votes}
    An empty vote list is neither a win nor a tie.
    """
    counts: Dict[str, int] = {}
    for vote in latest_votes(votes):
        counts[vote.target_id] = counts.get(vote.target_id, 0) + 1

    if not counts:
        return TallyResult()

    max_votes = max(counts.values())
    leaders = [target for target, count in counts.items() if count == max_votes]

    if len(leaders) == 1:
        return TallyResult(winner=leaders[0], counts=counts)
    return TallyResult(is_tie=True, tied=leaders, counts=counts)


def resolve_night_kill(votes: Iterable[Vote]) -> Optional[str]:
    """Werewolf kill target, or None when nobody voted or the pack is split."""
    return tally_votes(votes).winner
