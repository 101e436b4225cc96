from typing import Iterable, Optional

from models.game import Faction, PlayerState, Role


def evaluate_winner(players: Iterable[PlayerState]) -> Optional[Faction]:
    """
    Decide whether a faction has won.

    Only alive participants count (participating and not eliminated).
    Villagers win when no werewolf is left; werewolves win when no villager
    is left. Outnumbering the other side is NOT a win: the game runs until one
    faction is wiped out.
    """
    werewolves = 0
    villagers = 0
    for p in players:
        if not p.can_act:
            continue
        if p.role == Role.WEREWOLF:
            werewolves += 1
        elif p.role == Role.VILLAGER:
            villagers += 1

    if werewolves == 0:
        return Faction.VILLAGERS
    if villagers == 0:
        return Faction.WEREWOLVES
    return None
