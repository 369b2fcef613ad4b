import logging
import re
from typing import Dict, List, Optional, Tuple, Union

from mi_records import Record, RecordType, Value

logger = logging.getLogger(__name__)

PROMPT = "(gdb)"

_PREFIXES = {
    "^": RecordType.RESULT,
    "*": RecordType.EXEC_ASYNC,
    "+": RecordType.STATUS_ASYNC,
    "=": RecordType.NOTIFY_ASYNC,
    "~": RecordType.CONSOLE,
    "@": RecordType.TARGET,
    "&": RecordType.LOG,
}

# MI uses C-like escapes; anything else after a backslash is kept as-is
_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "b": "\b", "f": "\f"}

_DIGITS_RE = re.compile(r"[0-9]*")
_NAME_RE = re.compile(r"[A-Za-z0-9_.\-]*")
_BARE_RE = re.compile(r"[^,}\]]*")
_LIST_BARE_RE = re.compile(r"[^,\]]*")

UNTERMINATED_STRING = "unterminated string"
MALFORMED_RECORD = "malformed record"


class _Cursor:
    """Position over one line plus the first diagnostic seen."""

    def __init__(self, text: str):
        self.text = text
        self.pos = 0
        self.error: Optional[str] = None

    def peek(self, offset: int = 0) -> str:
        i = self.pos + offset
        return self.text[i] if i < len(self.text) else ""

    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    def take(self, pattern) -> str:
        m = pattern.match(self.text, self.pos)
        self.pos = m.end()
        return m.group(0)

    def note(self, msg: str):
        if self.error is None:
            self.error = f"{msg} at column {self.pos}"


def _parse_cstring(cur: _Cursor) -> str:
    cur.pos += 1  # opening quote
    out = []
    text = cur.text
    while cur.pos < len(text):
        ch = text[cur.pos]
        cur.pos += 1
        if ch == '"':
            return "".join(out)
        if ch == "\\":
            if cur.pos >= len(text):
                break
            esc = text[cur.pos]
            cur.pos += 1
            out.append(_ESCAPES.get(esc, esc))
        else:
            out.append(ch)
    cur.note(UNTERMINATED_STRING)
    return "".join(out)


def _parse_results(cur: _Cursor) -> Dict[str, Value]:
    results: Dict[str, Value] = {}
    while not cur.at_end():
        name = cur.take(_NAME_RE)
        if not name or cur.peek() != "=":
            cur.note(f"{MALFORMED_RECORD}: expected name=value")
            break
        cur.pos += 1
        results[name] = _parse_value(cur)
        if cur.peek() != ",":
            break
        cur.pos += 1
        # trailing comma before the closer
        if cur.peek() in ("}", "]"):
            break
    return results


def _parse_tuple(cur: _Cursor) -> Value:
    cur.pos += 1
    if cur.peek() == "}":
        cur.pos += 1
        return Value.make_tuple({})
    fields = _parse_results(cur)
    if cur.peek() == "}":
        cur.pos += 1
    else:
        cur.note(f"{MALFORMED_RECORD}: expected '}}'")
    return Value.make_tuple(fields)


def _parse_list(cur: _Cursor) -> Value:
    cur.pos += 1
    items: List[Tuple[str, Value]] = []
    if cur.peek() == "]":
        cur.pos += 1
        return Value.make_list(items)

    while not cur.at_end():
        ch = cur.peek()
        if ch == '"':
            items.append(("", Value.make_const(_parse_cstring(cur))))
        elif ch == "{":
            items.append(("", _parse_tuple(cur)))
        elif ch == "[":
            items.append(("", _parse_list(cur)))
        else:
            # name=value, or a bare value that merely looks like a name
            mark = cur.pos
            name = cur.take(_NAME_RE)
            if name and cur.peek() == "=":
                cur.pos += 1
                items.append((name, _parse_value(cur)))
            else:
                cur.pos = mark
                items.append(("", Value.make_const(cur.take(_LIST_BARE_RE))))
        if cur.peek() != ",":
            break
        cur.pos += 1
        if cur.peek() == "]":
            break

    if cur.peek() == "]":
        cur.pos += 1
    else:
        cur.note(f"{MALFORMED_RECORD}: expected ']'")
    return Value.make_list(items)


def _parse_value(cur: _Cursor) -> Value:
    ch = cur.peek()
    if ch == '"':
        return Value.make_const(_parse_cstring(cur))
    if ch == "{":
        return _parse_tuple(cur)
    if ch == "[":
        return _parse_list(cur)
    # barewords/numbers
    return Value.make_const(cur.take(_BARE_RE))


def parse_line_with_error(line: str) -> Tuple[Record, Optional[str]]:
    """
    Parse one MI output line. Never raises for malformed input: the record
    is filled in as far as the grammar could be followed and the first
    problem found is returned alongside it (None when the line was clean).
    """
    if line.rstrip() == PROMPT:
        return Record(type=RecordType.PROMPT, raw=line), None

    cur = _Cursor(line)
    digits = cur.take(_DIGITS_RE)
    token = None
    if digits and cur.peek() in _PREFIXES:
        token = int(digits)
    else:
        # not a token after all, the digits belong to something else
        cur.pos = 0

    prefix = cur.peek()
    rtype = _PREFIXES.get(prefix) if prefix else None
    if rtype is None:
        return Record(type=RecordType.UNKNOWN, raw=line), None
    cur.pos += 1

    # stream records: ~"text", &"log", @"target output"
    if prefix in "~@&":
        if cur.peek() == '"':
            text = _parse_cstring(cur)
        else:
            cur.note(f"{MALFORMED_RECORD}: expected '\"'")
            text = line[cur.pos:]
            cur.pos = len(line)
        if not cur.at_end():
            cur.note(f"{MALFORMED_RECORD}: trailing text")
        return Record(type=rtype, token=token, stream_text=text, raw=line), cur.error

    # result: ^done,...  async: *stopped,...  +download,...  =thread-created,...
    klass = cur.take(_NAME_RE)
    results: Dict[str, Value] = {}
    if cur.peek() == ",":
        cur.pos += 1
        results = _parse_results(cur)
    if not cur.at_end():
        cur.note(f"{MALFORMED_RECORD}: trailing text")
    return Record(type=rtype, token=token, klass=klass, results=results, raw=line), cur.error


def parse_line(line: str) -> Record:
    return parse_line_with_error(line)[0]


class MiParser:
    """
    Incremental decoder for debugger stdout.

    Chunks need not be line aligned; incomplete trailing data is kept until
    the rest of the line arrives. Not thread-safe: one instance per debugger
    process, fed from a single reader.
    """

    def __init__(self, encoding: str = "utf-8", errors: str = "replace"):
        self.encoding = encoding
        self.errors = errors
        self._buffer = bytearray()

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    def feed(self, chunk: Union[bytes, bytearray, str]) -> List[Record]:
        if isinstance(chunk, str):
            chunk = chunk.encode(self.encoding)
        self._buffer += chunk

        records = []
        while True:
            nl = self._buffer.find(b"\n")
            if nl < 0:
                break
            raw = bytes(self._buffer[:nl])
            del self._buffer[:nl + 1]
            if raw.endswith(b"\r"):
                raw = raw[:-1]
            if not raw:
                continue
            line = raw.decode(self.encoding, self.errors)
            record, error = parse_line_with_error(line)
            if error:
                logger.debug("mi parse note (%s): %r", error, line)
            elif record.type is RecordType.UNKNOWN:
                logger.debug("unrecognized mi line: %r", line)
            records.append(record)
        return records

    def reset(self):
        # new debugger process: never stitch lines across lifetimes
        self._buffer.clear()
