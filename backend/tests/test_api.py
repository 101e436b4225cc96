BASE_URL = "http://localhost:4200"


def create(client, name="Alice", max_players=10):
    res = client.post("/api/games", json={
        "game_name": "Full Moon",
        "creator_name": name,
        "max_players": max_players,
        "frontend_base_url": BASE_URL,
    })
    assert res.status_code == 201
    return res.json()


def join(client, game_id, name, player_id=None):
    body = {"display_name": name}
    if player_id:
        body["player_id"] = player_id
    return client.post(f"/api/games/{game_id}/join", json=body)


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["status"] == "ok"
    assert res.json()["poll_interval_ms"] == 1000


def test_create_and_poll(client):
    created = create(client)
    assert created["join_link"] == f"{BASE_URL}/game/{created['game_id']}"

    res = client.get(f"/api/games/{created['game_id']}")
    assert res.status_code == 200
    state = res.json()
    assert state["game"]["creator_name"] == "Alice"
    assert state["game"]["version"] == 1
    assert state["game"]["status"] == "waiting_for_players"
    assert state["players"][0]["is_creator"] is True


def test_create_validation(client):
    res = client.post("/api/games", json={
        "game_name": "",
        "creator_name": "Alice",
        "frontend_base_url": BASE_URL,
    })
    assert res.status_code == 422


def test_poll_returns_204_when_unchanged(client):
    game_id = create(client)["game_id"]
    res = client.get(f"/api/games/{game_id}", params={"version": 1})
    assert res.status_code == 204
    assert res.content == b""

    join(client, game_id, "Bob")
    res = client.get(f"/api/games/{game_id}", params={"version": 1})
    assert res.status_code == 200
    assert res.json()["game"]["version"] == 2


def test_unknown_game_is_404(client):
    assert client.get("/api/games/nope").status_code == 404
    assert join(client, "nope", "Bob").status_code == 404
    assert client.post("/api/games/nope/leave", json={"player_id": "x"}).status_code == 404


def test_join_full_and_removed(client):
    created = create(client, max_players=2)
    game_id = created["game_id"]
    bob = join(client, game_id, "Bob").json()["player_id"]

    res = join(client, game_id, "Cara")
    assert res.status_code == 409

    res = client.post(f"/api/games/{game_id}/remove", json={
        "player_id": bob, "moderator_id": created["player_id"],
    })
    assert res.status_code == 200
    res = join(client, game_id, "Bob", player_id=bob)
    assert res.status_code == 403
    assert res.json()["detail"] == "You were removed from this game"


def test_settings_require_creator(client):
    created = create(client)
    game_id = created["game_id"]
    bob = join(client, game_id, "Bob").json()["player_id"]
    body = {"min_players": 3, "max_players": 8, "discussion_minutes": 2, "werewolf_count": 1}

    res = client.post(f"/api/games/{game_id}/settings", json={**body, "creator_id": bob})
    assert res.status_code == 403
    res = client.post(f"/api/games/{game_id}/settings", json={**body, "creator_id": created["player_id"]})
    assert res.status_code == 200
    assert client.get(f"/api/games/{game_id}").json()["game"]["max_players"] == 8


def test_game_flow_over_http(client):
    created = create(client)
    game_id = created["game_id"]
    creator = created["player_id"]
    others = [join(client, game_id, name).json()["player_id"] for name in ("Bob", "Cara")]
    everyone = [creator] + others

    res = client.get(f"/api/games/{game_id}/role", params={"player_id": creator})
    assert res.status_code == 409

    assert client.post(f"/api/games/{game_id}/start", json={"creator_id": others[0]}).status_code == 403
    assert client.post(f"/api/games/{game_id}/start", json={"creator_id": creator}).status_code == 200

    roles = {
        pid: client.get(f"/api/games/{game_id}/role", params={"player_id": pid}).json()["role"]
        for pid in everyone
    }
    assert sorted(roles.values()) == ["villager", "villager", "werewolf"]
    wolf = next(pid for pid, role in roles.items() if role == "werewolf")

    for pid in everyone:
        assert client.post(f"/api/games/{game_id}/done", json={"player_id": pid}).status_code == 200
    state = client.get(f"/api/games/{game_id}").json()
    assert state["game"]["phase"] == "night"

    res = client.post(f"/api/games/{game_id}/vote", json={"voter_id": wolf, "target_id": others[0]})
    assert res.status_code == 409
    assert res.json()["detail"] == "No kill on the first night"

    assert client.post(f"/api/games/{game_id}/force-advance", json={"player_id": creator}).status_code == 200
    assert client.get(f"/api/games/{game_id}").json()["game"]["phase"] == "discussion"

    for pid in everyone:
        if pid != wolf:
            res = client.post(f"/api/games/{game_id}/vote", json={"voter_id": pid, "target_id": wolf})
            assert res.status_code == 200

    client.post(f"/api/games/{game_id}/force-advance", json={"player_id": creator})
    state = client.get(f"/api/games/{game_id}").json()
    assert state["game"]["phase"] == "day_elimination"
    assert state["game"]["winner"] == "villagers"
    assert state["game"]["last_eliminated_by_day"] == wolf

    client.post(f"/api/games/{game_id}/force-advance", json={"player_id": creator})
    state = client.get(f"/api/games/{game_id}").json()
    assert state["game"]["phase"] == "game_over"
    assert state["game"]["status"] == "ended"

    res = client.post(f"/api/games/{game_id}/force-advance", json={"player_id": creator})
    assert res.status_code == 409
