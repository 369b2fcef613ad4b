import logging
import queue
import threading
from collections import deque
from concurrent.futures import Future, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from mi_parse import MiParser
from mi_records import Record, RecordType

logger = logging.getLogger(__name__)


class MiSessionError(RuntimeError):
    pass


class MiTimeoutError(MiSessionError):
    pass


class MiSessionClosed(MiSessionError):
    pass


class MiCommandError(MiSessionError):
    """The debugger answered a command with ^error."""

    def __init__(self, message: str, record: Record):
        super().__init__(message)
        self.record = record


def _quote(arg: str) -> str:
    return '"' + arg.replace("\\", "\\\\").replace('"', '\\"') + '"'


@dataclass
class SessionConfig:
    timeout: float = 2.0
    encoding: str = "utf-8"
    # oldest entries are dropped once these fill up
    max_events: int = 1000
    max_console: int = 1000


class GdbMiSession:
    """
    Matches MI commands with the result records that answer them.

    The session never touches the debugger process itself: `write` sends one
    command line to its stdin, and whoever reads its stdout passes the raw
    chunks to `on_output`.
    """

    def __init__(self, write: Callable[[str], None], config: Optional[SessionConfig] = None):
        self.write = write
        self.config = config or SessionConfig()
        self.parser = MiParser(encoding=self.config.encoding)
        self.events: "queue.Queue[Record]" = queue.Queue(maxsize=self.config.max_events)

        self._lock = threading.Lock()
        self._next_token = 1
        self._pending: Dict[int, Future] = {}

        self.last_stop: Dict[str, Any] = {}
        self.running = False
        self.console: Deque[Tuple[RecordType, str]] = deque(maxlen=self.config.max_console)

    def on_output(self, chunk) -> List[Record]:
        records = self.parser.feed(chunk)
        for rec in records:
            self._dispatch(rec)
        return records

    def _dispatch(self, rec: Record):
        if rec.type is RecordType.RESULT:
            if rec.klass == "running":
                self.running = True
            fut = None
            if rec.token is not None:
                with self._lock:
                    fut = self._pending.pop(rec.token, None)
            if fut is not None:
                fut.set_result(rec)
            else:
                logger.warning("result record with no pending command: %r", rec.raw)
        elif rec.type is RecordType.EXEC_ASYNC:
            # track stop events
            if rec.klass == "stopped":
                self.last_stop = rec.payload()
                self.running = False
            elif rec.klass == "running":
                self.running = True
        elif rec.is_stream:
            self.console.append((rec.type, rec.stream_text))
        else:
            logger.debug("mi %s: %r", rec.type.value, rec.raw)

        if rec.type is not RecordType.PROMPT:
            self._post_event(rec)

    def _post_event(self, rec: Record):
        while True:
            try:
                self.events.put_nowait(rec)
                return
            except queue.Full:
                try:
                    self.events.get_nowait()
                except queue.Empty:
                    pass

    def _allocate(self) -> Tuple[int, Future]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            fut: Future = Future()
            self._pending[token] = fut
            return token, fut

    def cmd(self, mi_cmd: str, wait: bool = True, timeout: Optional[float] = None,
            check: bool = False) -> Optional[Record]:
        """
        Send an MI command tagged with a fresh token.
        Returns the correlated result record, or None when wait is False.
        """
        token, fut = self._allocate()
        logger.debug("mi -> %d%s", token, mi_cmd)
        try:
            self.write(f"{token}{mi_cmd}")
        except Exception:
            with self._lock:
                self._pending.pop(token, None)
            raise

        if not wait:
            return None

        timeout = self.config.timeout if timeout is None else timeout
        try:
            rec = fut.result(timeout=timeout)
        except FutureTimeout:
            with self._lock:
                self._pending.pop(token, None)
            logger.warning("no result for %d%s after %.1fs", token, mi_cmd, timeout)
            raise MiTimeoutError(f"timeout waiting for {mi_cmd!r}") from None

        if check and rec.klass == "error":
            raise MiCommandError(rec.payload().get("msg", "error"), rec)
        return rec

    def reset(self):
        """Drop buffered output and fail every outstanding command."""
        self.parser.reset()
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for fut in pending:
            fut.set_exception(MiSessionClosed("debugger session reset"))
        self.running = False
        self.last_stop = {}
        self.console.clear()
        while True:
            try:
                self.events.get_nowait()
            except queue.Empty:
                break

    close = reset

    # Debug controls

    def exec_continue(self):
        return self.cmd("-exec-continue", check=True)

    def exec_interrupt(self):
        return self.cmd("-exec-interrupt", check=True)

    def exec_next(self):
        return self.cmd("-exec-next", check=True)

    def exec_step(self):
        return self.cmd("-exec-step", check=True)

    def exec_finish(self):
        return self.cmd("-exec-finish", check=True)

    # Breakpoints, stack, variables

    def break_insert(self, location: str, condition: Optional[str] = None,
                     temporary: bool = False) -> Dict[str, Any]:
        # location can be: loop, file:line, *0x401000
        cmd = "-break-insert"
        if temporary:
            cmd += " -t"
        if condition:
            cmd += f" -c {_quote(condition)}"
        cmd += f" {location}"
        rec = self.cmd(cmd, check=True)
        return rec.payload().get("bkpt", {})

    def break_delete(self, bpnum: str):
        self.cmd(f"-break-delete {bpnum}", check=True)

    def list_breakpoints(self) -> List[Dict[str, Any]]:
        rec = self.cmd("-break-list", check=True)
        table = rec.results.get("BreakpointTable")
        body = table.get("body") if table is not None else None
        if body is None:
            return []
        return [bp.to_python() for name, bp in body.list if name == "bkpt"]

    def list_frames(self) -> List[Dict[str, Any]]:
        rec = self.cmd("-stack-list-frames", check=True)
        stack = rec.results.get("stack")
        if stack is None:
            return []
        return [frame.to_python() for _, frame in stack.list]

    def list_variables(self) -> List[Dict[str, Any]]:
        rec = self.cmd("-stack-list-variables --simple-values", check=True)
        variables = rec.results.get("variables")
        if variables is None:
            return []
        return [var.to_python() for _, var in variables.list]

    def evaluate(self, expr: str) -> str:
        rec = self.cmd(f"-data-evaluate-expression {_quote(expr)}", check=True)
        value = rec.results.get("value")
        return value.text if value is not None else ""
