import logging
import os
import re
import threading

from flask import Flask, request, jsonify

from mi_parse import MiParser, parse_line_with_error

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config.from_mapping(
    MI_ENCODING="utf-8",
    MI_MAX_SESSIONS=16,
    MI_MAX_CHUNK=1 << 20,
)
# e.g. FLASK_MI_MAX_SESSIONS=64
app.config.from_prefixed_env()

# one decoder per named stream, so partial lines never mix between debuggers
DECODERS = {}
# MiParser has no locking of its own and Flask serves requests on threads
DECODERS_LOCK = threading.Lock()

_SESSION_RE = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


def safe_session_name(name) -> str:
    """
    Session names end up as dict keys and in logs; keep them short and plain.
    """
    if not isinstance(name, str) or not _SESSION_RE.match(name):
        raise ValueError("Invalid session name")
    return name


def _json_body():
    return request.get_json(force=True, silent=True) or {}


@app.post("/api/parse")
def api_parse():
    data = _json_body()
    line = data.get("line")
    if not isinstance(line, str):
        return jsonify({"ok": False, "error": "Missing line"}), 400

    record, note = parse_line_with_error(line.rstrip("\r\n"))
    return jsonify({"ok": True, "record": record.to_dict(), "note": note})


@app.post("/api/feed")
def api_feed():
    data = _json_body()
    try:
        name = safe_session_name(data.get("session") or "default")
    except ValueError as e:
        return jsonify({"ok": False, "error": str(e)}), 400

    chunk = data.get("chunk")
    if not isinstance(chunk, str):
        return jsonify({"ok": False, "error": "Missing chunk"}), 400
    if len(chunk) > app.config["MI_MAX_CHUNK"]:
        return jsonify({"ok": False, "error": "Chunk too large"}), 400

    with DECODERS_LOCK:
        parser = DECODERS.get(name)
        if parser is None:
            if len(DECODERS) >= int(app.config["MI_MAX_SESSIONS"]):
                return jsonify({"ok": False, "error": "Too many sessions"}), 400
            parser = DECODERS[name] = MiParser(encoding=app.config["MI_ENCODING"])
            logger.info("new decoder session %s", name)
        records = parser.feed(chunk)
        pending = len(parser.pending)

    return jsonify({
        "ok": True,
        "records": [r.to_dict() for r in records],
        "pending": pending,
    })


@app.post("/api/reset")
def api_reset():
    data = _json_body()
    try:
        name = safe_session_name(data.get("session") or "default")
    except ValueError as e:
        return jsonify({"ok": False, "error": str(e)}), 400

    with DECODERS_LOCK:
        parser = DECODERS.get(name)
        if parser is None:
            return jsonify({"ok": False, "error": f"No session: {name}"}), 404
        parser.reset()
    return jsonify({"ok": True})


@app.get("/api/sessions")
def api_sessions():
    with DECODERS_LOCK:
        items = [{"session": n, "pending": len(p.pending)} for n, p in sorted(DECODERS.items())]
    return jsonify({"ok": True, "sessions": items})


@app.delete("/api/sessions/<name>")
def api_session_delete(name):
    with DECODERS_LOCK:
        dropped = DECODERS.pop(name, None)
    if dropped is None:
        return jsonify({"ok": False, "error": f"No session: {name}"}), 404
    logger.info("dropped decoder session %s", name)
    return jsonify({"ok": True})


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    app.run(
        host=os.environ.get("MI_WEB_HOST", "127.0.0.1"),
        port=int(os.environ.get("MI_WEB_PORT", "5000")),
        debug=True,
    )
