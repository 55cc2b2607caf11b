"""GGB AST: parse-time node definitions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator


# ============================================================
# POSITION
# ============================================================


@dataclass
class Pos:
    """Source position, 1-indexed."""

    line: int
    col: int


# ============================================================
# TYPES (parse-time)
# ============================================================


@dataclass
class TType:
    """Base for all type nodes."""

    pos: Pos


@dataclass
class TUint(TType):
    """u<width>."""

    width: int


@dataclass
class TArrayType(TType):
    """[u<width> <length>]."""

    element: TUint
    length: int


# ============================================================
# DECLARATIONS
# ============================================================


@dataclass
class TDecl:
    """Base for all top-level items that are not statements."""

    pos: Pos


@dataclass
class TParam:
    """Function parameter: name: Type."""

    pos: Pos
    name: str
    typ: TType


@dataclass
class TFnDecl(TDecl):
    """fn name (params) : Ret { body }. ret is None for void functions."""

    name: str
    params: list[TParam]
    ret: TType | None
    body: list[TStmt]
    has_parens: bool = True


@dataclass
class TConstDecl(TDecl):
    """const NAME: [uN L] = [v0 v1 ...]."""

    name: str
    typ: TArrayType
    values: list[TIntLit]


# ============================================================
# STATEMENTS
# ============================================================


@dataclass
class TStmt:
    """Base for all statements."""

    pos: Pos


@dataclass
class TStaticDecl(TStmt):
    """static(@addr)? NAME: Type, legal at top level and inside blocks."""

    name: str
    typ: TType
    address: int | None = None


@dataclass
class TLetStmt(TStmt):
    """let name: Type = expr."""

    name: str
    typ: TType
    value: TExpr


@dataclass
class TAssignStmt(TStmt):
    """(= target value), (+= target value), (-= target value)."""

    op: str
    target: TVar | TIndex
    value: TExpr


@dataclass
class TIfStmt(TStmt):
    """if cond { ... } else { ... }."""

    cond: TExpr
    then_body: list[TStmt]
    else_body: list[TStmt] | None


@dataclass
class TForStmt(TStmt):
    """for name: Type in start..end { ... }."""

    name: str
    typ: TType
    start: TExpr
    end: TExpr
    body: list[TStmt]


@dataclass
class TLoopStmt(TStmt):
    """loop { ... }."""

    body: list[TStmt]


@dataclass
class TBreakStmt(TStmt):
    """break."""


@dataclass
class TContinueStmt(TStmt):
    """continue."""


@dataclass
class TReturnStmt(TStmt):
    """return expr?."""

    value: TExpr | None


@dataclass
class TPanicStmt(TStmt):
    """!!."""


@dataclass
class TExprStmt(TStmt):
    """Bare expression as statement (normally a call)."""

    expr: TExpr


# ============================================================
# EXPRESSIONS
# ============================================================


@dataclass
class TExpr:
    """Base for all expressions."""

    pos: Pos


@dataclass
class TIntLit(TExpr):
    """Integer literal. raw keeps the spelling (decimal or 0x...)."""

    value: int
    raw: str


@dataclass
class TVar(TExpr):
    """Variable, static or const reference."""

    name: str


@dataclass
class TIndex(TExpr):
    """[index]name."""

    name: str
    index: TExpr


@dataclass
class TBinaryOp(TExpr):
    """(op left right)."""

    op: str
    left: TExpr
    right: TExpr


@dataclass
class TCall(TExpr):
    """(func args...)."""

    func: str
    args: list[TExpr]


# ============================================================
# MODULE
# ============================================================


@dataclass
class TModule:
    """A whole source file, items kept in source order."""

    items: list[TDecl | TStmt]
    trap_overflow: bool = False
    max_depth: int | None = None

    def functions(self) -> list[TFnDecl]:
        return [i for i in self.items if isinstance(i, TFnDecl)]

    def consts(self) -> list[TConstDecl]:
        return [i for i in self.items if isinstance(i, TConstDecl)]

    def statements(self) -> list[TStmt]:
        return [i for i in self.items if isinstance(i, TStmt)]


def walk_stmts(stmts: list[TStmt]) -> Iterator[TStmt]:
    """Yield every statement in stmts, descending into nested blocks."""
    for st in stmts:
        yield st
        if isinstance(st, TIfStmt):
            yield from walk_stmts(st.then_body)
            if st.else_body is not None:
                yield from walk_stmts(st.else_body)
        elif isinstance(st, (TForStmt, TLoopStmt)):
            yield from walk_stmts(st.body)
