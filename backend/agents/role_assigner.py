"""
Role Assignment: random role shuffling at game start.

Responsibilities:
- Shuffle the active participants (Fisher-Yates via random.shuffle)
- Deal exactly `werewolf_count` Werewolf roles, Villager to everyone else
- Leave non-participating records (left/removed) without a role

Called once by the Session Store when the creator starts the game.
"""
import logging
import random
from typing import Any, Dict, List, Optional

from models.game import GameState, Role

logger = logging.getLogger(__name__)


class RoleAssigner:
    """
    Assigns roles to all active participants of a game.

    A game needs at least one villager and one werewolf, so the werewolf
    count must be in [1, active players - 1].
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def validate(self, active_count: int, werewolf_count: int) -> Optional[str]:
        """Return a human-readable reason the distribution is impossible, or None."""
        if werewolf_count < 1:
            return "At least one werewolf is required"
        if werewolf_count >= active_count:
            return (
                f"Too many werewolves ({werewolf_count}) for {active_count} players; "
                "at least one villager is required"
            )
        return None

    def assign_roles(self, game: GameState) -> Dict[str, Any]:
        """
        Shuffle and set roles on the game's active players.

        Returns:
        {
            "werewolves": [player_id, ...],
            "villagers":  [player_id, ...],
        }

        Raises ValueError when the werewolf count does not fit the player count.
        """
        active = game.active_players()
        reason = self.validate(len(active), game.werewolf_count)
        if reason:
            raise ValueError(reason)

        shuffled = list(active)
        self._rng.shuffle(shuffled)

        werewolves: List[str] = []
        villagers: List[str] = []
        for i, player in enumerate(shuffled):
            if i < game.werewolf_count:
                player.role = Role.WEREWOLF
                werewolves.append(player.id)
            else:
                player.role = Role.VILLAGER
                villagers.append(player.id)

        for player in game.players:
            if not player.is_active:
                player.role = None

        logger.info(
            f"[{game.id}] Roles assigned: {len(werewolves)} werewolves, {len(villagers)} villagers"
        )
        return {"werewolves": werewolves, "villagers": villagers}


# Module-level singleton
role_assigner = RoleAssigner()
