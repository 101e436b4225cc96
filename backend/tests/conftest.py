from datetime import datetime, timedelta, timezone

import pytest

from agents.game_master import PhaseTimings
from models.game import Role
from services.game_store import GameStore

NAMES = ["Alice", "Bob", "Cara", "Dan", "Eve", "Finn", "Gus", "Hana"]
BASE_URL = "http://localhost:4200"


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 20, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(clock):
    return GameStore(
        timings=PhaseTimings(night_sec=30, tiebreak_sec=60, elimination_display_sec=10),
        clock=clock,
        qr_encoder=lambda text: f"qr:{text}",
    )


@pytest.fixture()
def lobby(store):
    """Factory: a game with n players joined (creator first). Returns (game, player_ids)."""
    def _make(n_players=3, werewolves=1):
        game = store.create_game("Full Moon", NAMES[0], 20, BASE_URL).data["game"]
        ids = [game.creator_id]
        for name in NAMES[1:n_players]:
            ids.append(store.join_game(game.id, name).data["player"].id)
        if werewolves != 1:
            assert store.update_settings(
                game.id, game.creator_id,
                min_players=3, max_players=20, discussion_minutes=5, werewolf_count=werewolves,
            ).success
        return game, ids
    return _make


@pytest.fixture()
def started(store, lobby):
    """Factory: a started game in role_reveal."""
    def _make(n_players=3, werewolves=1):
        game, _ = lobby(n_players, werewolves)
        result = store.start_game(game.id, game.creator_id)
        assert result.success, result.message
        return game
    return _make


@pytest.fixture()
def force(store):
    """Force-advance a game as its creator; asserts success."""
    def _force(game):
        result = store.force_advance(game.id, game.creator_id)
        assert result.success, result.message
        return game.phase
    return _force


@pytest.fixture()
def roles():
    """Split a game's active players into (werewolf ids, villager ids)."""
    def _roles(game):
        wolves = [p.id for p in game.players if p.role == Role.WEREWOLF]
        villagers = [p.id for p in game.players if p.role == Role.VILLAGER]
        return wolves, villagers
    return _roles


@pytest.fixture()
def client(store):
    from fastapi.testclient import TestClient
    from main import app
    from services.game_store import get_game_store

    app.dependency_overrides[get_game_store] = lambda: store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
