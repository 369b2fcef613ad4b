import threading

import pytest

import app as webapp


@pytest.fixture
def client():
    webapp.DECODERS.clear()
    webapp.app.config["TESTING"] = True
    with webapp.app.test_client() as c:
        yield c
    webapp.DECODERS.clear()


def test_parse_line(client):
    rv = client.post("/api/parse", json={"line": '2^done,stack=[frame={level="0"}]\n'})
    assert rv.status_code == 200
    body = rv.get_json()
    assert body["ok"] is True
    assert body["note"] is None
    assert body["record"]["kind"] == "result"
    assert body["record"]["token"] == 2
    assert body["record"]["payload"] == {"stack": [{"frame": {"level": "0"}}]}


def test_parse_reports_note(client):
    body = client.post("/api/parse", json={"line": '~"oops'}).get_json()
    assert body["record"]["text"] == "oops"
    assert "unterminated string" in body["note"]


def test_parse_requires_line(client):
    rv = client.post("/api/parse", json={})
    assert rv.status_code == 400
    assert rv.get_json()["ok"] is False


def test_feed_across_requests(client):
    first = client.post("/api/feed", json={"session": "uno", "chunk": "1^done\n*runn"}).get_json()
    assert [r["kind"] for r in first["records"]] == ["result"]
    assert first["pending"] == len("*runn")

    second = client.post("/api/feed", json={"session": "uno", "chunk": "ing\n(gdb)\n"}).get_json()
    assert [r["kind"] for r in second["records"]] == ["exec", "prompt"]
    assert second["records"][0]["cls"] == "running"
    assert second["pending"] == 0


def test_feed_rejects_bad_session_name(client):
    rv = client.post("/api/feed", json={"session": "../etc", "chunk": "x\n"})
    assert rv.status_code == 400


def test_feed_session_limit(client):
    webapp.app.config["MI_MAX_SESSIONS"] = 1
    try:
        assert client.post("/api/feed", json={"session": "a", "chunk": ""}).status_code == 200
        assert client.post("/api/feed", json={"session": "b", "chunk": ""}).status_code == 400
    finally:
        webapp.app.config["MI_MAX_SESSIONS"] = 16


def test_reset_and_sessions(client):
    client.post("/api/feed", json={"session": "uno", "chunk": "1^do"})
    listing = client.get("/api/sessions").get_json()
    assert listing["sessions"] == [{"session": "uno", "pending": 4}]

    assert client.post("/api/reset", json={"session": "uno"}).status_code == 200
    listing = client.get("/api/sessions").get_json()
    assert listing["sessions"] == [{"session": "uno", "pending": 0}]

    assert client.post("/api/reset", json={"session": "nope"}).status_code == 404


def test_delete_session(client):
    client.post("/api/feed", json={"session": "uno", "chunk": "x"})
    assert client.delete("/api/sessions/uno").status_code == 200
    assert client.delete("/api/sessions/uno").status_code == 404
    assert client.get("/api/sessions").get_json()["sessions"] == []


def test_concurrent_feeds_share_one_decoder(client):
    errors = []

    def worker(base):
        with webapp.app.test_client() as c:
            for i in range(50):
                body = c.post("/api/feed", json={
                    "session": "shared",
                    "chunk": f'{base + i}^done,value="{base + i}"\n',
                }).get_json()
                recs = body["records"]
                if len(recs) != 1 or recs[0]["token"] != base + i:
                    errors.append(recs)

    threads = [threading.Thread(target=worker, args=(n * 1000,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert client.get("/api/sessions").get_json()["sessions"] == [{"session": "shared", "pending": 0}]
