from fastapi.testclient import TestClient

from turnstream.config import HubConfig
from turnstream.main import create_app
from turnstream.services.boards import WordPuzzle
from turnstream.services.identity import resolve


def _client():
    return TestClient(create_app(HubConfig()))


def test_healthz():
    res = _client().get("/healthz")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_move_without_session_returns_placeholder():
    res = _client().get("/v1/connect4/move", params={"position": "3"})
    assert res.status_code == 200
    body = res.json()
    assert body["type"] == "ack"
    assert len(body["nonce"]) == 32
    assert res.headers["cache-control"] == "no-store, no-cache, must-revalidate, proxy-revalidate, max-age=0"
    assert res.headers["pragma"] == "no-cache"
    assert res.headers["expires"] == "0"
    assert res.headers["surrogate-control"] == "no-store"


def test_placeholder_nonce_changes():
    c = _client()
    first = c.get("/v1/tictactoe/move").json()["nonce"]
    second = c.get("/v1/tictactoe/move").json()["nonce"]
    assert first != second


def test_move_reaches_session():
    app = create_app(HubConfig())
    hub = app.state.hubs["hangman"]

    ident = resolve("testclient")
    sess = hub.store.create_solo("hangman", ident.client_id, 90, puzzle=WordPuzzle("OX"))
    res = TestClient(app).get("/v1/hangman/move", params={"position": "o"})
    assert res.json()["type"] == "ack"
    assert "O" in sess.puzzle.correct


def test_stats_and_routes():
    c = _client()
    assert c.get("/v1/hangman/stats").json() == {"waiting": 0, "sessions": 0}
    assert c.get("/v1/hangman/solo_stream").status_code == 404
