from turnstream.services.identity import ClientIdentity
from turnstream.services.matchmaking import MatchQueue, WaitingEntry


def _entry(cid, addr=None):
    return WaitingEntry(identity=ClientIdentity(client_id=cid, address_hash=addr or cid))


def test_fifo_and_no_duplicates():
    q = MatchQueue()
    assert q.enqueue(_entry("a"))
    assert q.enqueue(_entry("b"))
    assert not q.enqueue(_entry("a"))
    assert [e.client_id for e in q] == ["a", "b"]
    assert len(q) == 2


def test_find_opponent_skips_same_address():
    q = MatchQueue()
    q.enqueue(_entry("a", "nat"))
    q.enqueue(_entry("b", "other"))
    match = q.find_opponent(ClientIdentity(client_id="c", address_hash="nat"))
    assert match is not None and match.client_id == "b"


def test_find_opponent_none_when_only_same_address():
    q = MatchQueue()
    q.enqueue(_entry("a", "nat"))
    assert q.find_opponent(ClientIdentity(client_id="c", address_hash="nat")) is None


def test_remove():
    q = MatchQueue()
    q.enqueue(_entry("a"))
    assert q.remove("a").client_id == "a"
    assert q.remove("a") is None
    assert "a" not in q
