"""GGB error taxonomy.

Every failure surfaced to a caller is a GgbError carrying a ``kind`` (one of
LexError, ParseError, DeclarationError, RuntimeError, ExplicitPanic), the
message and, where known, the source position.
"""

from __future__ import annotations

from .ast import Pos


class GgbError(Exception):
    """Base error for lexing, parsing, checking and evaluation."""

    kind: str = "Error"

    def __init__(self, msg: str, pos: Pos | None = None):
        if pos is None:
            super().__init__(msg)
        else:
            super().__init__(f"{msg} at line {pos.line} col {pos.col}")
        self.msg = msg
        self.pos = pos

    @property
    def line(self) -> int | None:
        return self.pos.line if self.pos is not None else None

    @property
    def col(self) -> int | None:
        return self.pos.col if self.pos is not None else None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.msg,
            "line": self.line,
            "col": self.col,
        }


class LexError(GgbError):
    """Unrecognized character or malformed literal."""

    kind = "LexError"


class ParseError(GgbError):
    """Grammar violation."""

    kind = "ParseError"


class DeclarationError(GgbError):
    """Duplicate or undefined name, or a write to a const."""

    kind = "DeclarationError"


class _TracedError(GgbError):
    def __init__(self, msg: str, pos: Pos | None = None):
        super().__init__(msg, pos)
        # function names, outermost first; filled in by the runtime
        self.trace: list[str] = []


class RuntimeFault(_TracedError):
    """Runtime-detected inconsistency: bounds, types, arity, stack depth."""

    kind = "RuntimeError"


class ExplicitPanic(_TracedError):
    """The program executed `!!`."""

    kind = "ExplicitPanic"
