"""
Records and values produced by the MI decoder.

One Record per output line of `gdb --interpreter=mi2`. Values are the
nested const/tuple/list structures found in result and async records.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


class ValueKind(enum.Enum):
    CONST = "const"
    TUPLE = "tuple"
    LIST = "list"


@dataclass(frozen=True)
class Value:
    kind: ValueKind = ValueKind.CONST
    const: str = ""
    tuple: Dict[str, "Value"] = field(default_factory=dict)
    # empty name => bare value, otherwise name=value
    list: List[Tuple[str, "Value"]] = field(default_factory=list)

    @classmethod
    def make_const(cls, text: str) -> "Value":
        return cls(kind=ValueKind.CONST, const=text)

    @classmethod
    def make_tuple(cls, mapping: Dict[str, "Value"]) -> "Value":
        return cls(kind=ValueKind.TUPLE, tuple=dict(mapping))

    @classmethod
    def make_list(cls, items: List[Tuple[str, "Value"]]) -> "Value":
        return cls(kind=ValueKind.LIST, list=list(items))

    @property
    def text(self) -> str:
        return self.const if self.kind is ValueKind.CONST else ""

    def get(self, name: str, default: Optional["Value"] = None) -> Optional["Value"]:
        """Tuple field lookup; for lists, the first element carrying `name`."""
        if self.kind is ValueKind.TUPLE:
            return self.tuple.get(name, default)
        if self.kind is ValueKind.LIST:
            for key, item in self.list:
                if key == name:
                    return item
        return default

    def to_python(self) -> Any:
        if self.kind is ValueKind.CONST:
            return self.const
        if self.kind is ValueKind.TUPLE:
            return {k: v.to_python() for k, v in self.tuple.items()}
        out = []
        for name, item in self.list:
            if name:
                out.append({name: item.to_python()})
            else:
                out.append(item.to_python())
        return out


class RecordType(enum.Enum):
    UNKNOWN = "unknown"
    PROMPT = "prompt"
    RESULT = "result"            # ^done,foo=bar
    EXEC_ASYNC = "exec"          # *stopped,reason=...
    STATUS_ASYNC = "status"      # +download,...
    NOTIFY_ASYNC = "notify"      # =thread-created,...
    CONSOLE = "console"          # ~"console stream"
    TARGET = "target"            # @"target stream"
    LOG = "log"                  # &"log stream"


STREAM_TYPES = frozenset((RecordType.CONSOLE, RecordType.TARGET, RecordType.LOG))
ASYNC_TYPES = frozenset((RecordType.EXEC_ASYNC, RecordType.STATUS_ASYNC, RecordType.NOTIFY_ASYNC))


@dataclass(frozen=True)
class Record:
    type: RecordType = RecordType.UNKNOWN
    token: Optional[int] = None
    klass: str = ""
    results: Dict[str, Value] = field(default_factory=dict)
    stream_text: str = ""
    raw: str = ""

    @property
    def is_stream(self) -> bool:
        return self.type in STREAM_TYPES

    @property
    def is_async(self) -> bool:
        return self.type in ASYNC_TYPES

    def payload(self) -> Dict[str, Any]:
        return {k: v.to_python() for k, v in self.results.items()}

    def to_dict(self) -> Dict[str, Any]:
        """
        JSON-friendly form, e.g.
          {"kind":"result","token":2,"cls":"done","payload":{...}}
          {"kind":"console","token":None,"text":"..."}
        """
        out: Dict[str, Any] = {"kind": self.type.value, "token": self.token}
        if self.is_stream:
            out["text"] = self.stream_text
        elif self.type is RecordType.RESULT or self.is_async:
            out["cls"] = self.klass
            out["payload"] = self.payload()
        out["raw"] = self.raw
        return out
