"""GGB declaration checker: validates names in a parsed TModule before it runs.

Type and arity mismatches are left to the runtime; this pass only looks at
what is declared where.
"""

from __future__ import annotations

from .ast import (
    Pos,
    TAssignStmt,
    TBinaryOp,
    TBreakStmt,
    TCall,
    TConstDecl,
    TContinueStmt,
    TExpr,
    TExprStmt,
    TFnDecl,
    TForStmt,
    TIfStmt,
    TIndex,
    TIntLit,
    TLetStmt,
    TLoopStmt,
    TModule,
    TPanicStmt,
    TReturnStmt,
    TStaticDecl,
    TStmt,
    TVar,
    walk_stmts,
)
from .errors import DeclarationError

KIND_STATIC = "static"
KIND_CONST = "const"
KIND_LOCAL = "local"


class Checker:
    def __init__(self) -> None:
        self.errors: list[DeclarationError] = []
        self.functions: dict[str, TFnDecl] = {}
        self.globals: dict[str, str] = {}
        self.fn_statics: dict[str, set[str]] = {}
        self.scopes: list[dict[str, str]] = []
        self.current_fn: str | None = None
        self.loop_depth: int = 0

    def error(self, msg: str, pos: Pos) -> None:
        self.errors.append(DeclarationError(msg, pos))

    # ── Scope management ──────────────────────────────────────

    def enter_scope(self) -> None:
        self.scopes.append({})

    def exit_scope(self) -> None:
        self.scopes.pop()

    def declare(self, name: str, pos: Pos) -> None:
        if name in self.scopes[-1]:
            self.error("'" + name + "' already declared in this scope", pos)
            return
        self.scopes[-1][name] = KIND_LOCAL

    def lookup(self, name: str) -> str | None:
        i = len(self.scopes) - 1
        while i >= 0:
            if name in self.scopes[i]:
                return self.scopes[i][name]
            i -= 1
        if self.current_fn is not None and name in self.fn_statics[self.current_fn]:
            return KIND_STATIC
        return self.globals.get(name)

    # ── Declarations ──────────────────────────────────────────

    def collect_declarations(self, module: TModule) -> None:
        for item in module.items:
            if isinstance(item, TFnDecl):
                if item.name in self.functions:
                    self.error("duplicate function '" + item.name + "'", item.pos)
                    continue
                self.functions[item.name] = item
                names: set[str] = set()
                for st in walk_stmts(item.body):
                    if isinstance(st, TStaticDecl):
                        if st.name in names:
                            self.error(
                                "static '"
                                + st.name
                                + "' already declared in '"
                                + item.name
                                + "'",
                                st.pos,
                            )
                        names.add(st.name)
                self.fn_statics[item.name] = names
            elif isinstance(item, TConstDecl):
                self._declare_global(item.name, KIND_CONST, item.pos)
            else:
                for st in walk_stmts([item]):
                    if isinstance(st, TStaticDecl):
                        self._declare_global(st.name, KIND_STATIC, st.pos)

    def _declare_global(self, name: str, kind: str, pos: Pos) -> None:
        if name in self.globals:
            self.error("'" + name + "' already declared at top level", pos)
            return
        self.globals[name] = kind

    # ── Bodies ────────────────────────────────────────────────

    def check_bodies(self, module: TModule) -> None:
        for fn in module.functions():
            if self.functions.get(fn.name) is not fn:
                continue
            self.current_fn = fn.name
            self.enter_scope()
            for p in fn.params:
                if p.name in self.fn_statics[fn.name]:
                    self.error(
                        "parameter '" + p.name + "' clashes with a static of '" + fn.name + "'",
                        p.pos,
                    )
                self.declare(p.name, p.pos)
            self.check_block(fn.body, new_scope=False)
            self.exit_scope()
            self.current_fn = None
        self.enter_scope()
        self.check_block(module.statements(), new_scope=False)
        self.exit_scope()

    def check_block(self, stmts: list[TStmt], *, new_scope: bool = True) -> None:
        if new_scope:
            self.enter_scope()
        for st in stmts:
            self.check_stmt(st)
        if new_scope:
            self.exit_scope()

    def check_stmt(self, st: TStmt) -> None:
        if isinstance(st, TStaticDecl) or isinstance(st, TPanicStmt):
            return
        if isinstance(st, TLetStmt):
            self.check_expr(st.value)
            self.declare(st.name, st.pos)
            return
        if isinstance(st, TAssignStmt):
            target = st.target
            if isinstance(target, TIndex):
                self.check_expr(target.index)
            kind = self._check_name(target.name, target.pos)
            if kind == KIND_CONST:
                self.error("cannot assign to const '" + target.name + "'", target.pos)
            self.check_expr(st.value)
            return
        if isinstance(st, TIfStmt):
            self.check_expr(st.cond)
            self.check_block(st.then_body)
            if st.else_body is not None:
                self.check_block(st.else_body)
            return
        if isinstance(st, TForStmt):
            self.check_expr(st.start)
            self.check_expr(st.end)
            self.enter_scope()
            self.declare(st.name, st.pos)
            self.loop_depth += 1
            self.check_block(st.body)
            self.loop_depth -= 1
            self.exit_scope()
            return
        if isinstance(st, TLoopStmt):
            self.loop_depth += 1
            self.check_block(st.body)
            self.loop_depth -= 1
            return
        if isinstance(st, (TBreakStmt, TContinueStmt)):
            if self.loop_depth == 0:
                word = "break" if isinstance(st, TBreakStmt) else "continue"
                self.error("'" + word + "' outside of a loop", st.pos)
            return
        if isinstance(st, TReturnStmt):
            if self.current_fn is None:
                self.error("'return' outside of a function", st.pos)
            if st.value is not None:
                self.check_expr(st.value)
            return
        if isinstance(st, TExprStmt):
            self.check_expr(st.expr)
            return
        raise TypeError(f"unexpected statement {type(st).__name__}")

    def check_expr(self, expr: TExpr) -> None:
        if isinstance(expr, TIntLit):
            return
        if isinstance(expr, TVar):
            self._check_name(expr.name, expr.pos)
            return
        if isinstance(expr, TIndex):
            self._check_name(expr.name, expr.pos)
            self.check_expr(expr.index)
            return
        if isinstance(expr, TBinaryOp):
            self.check_expr(expr.left)
            self.check_expr(expr.right)
            return
        if isinstance(expr, TCall):
            if expr.func not in self.functions:
                self.error("undefined function '" + expr.func + "'", expr.pos)
            for arg in expr.args:
                self.check_expr(arg)
            return
        raise TypeError(f"unexpected expression {type(expr).__name__}")

    def _check_name(self, name: str, pos: Pos) -> str | None:
        kind = self.lookup(name)
        if kind is not None:
            return kind
        if name in self.functions:
            self.error("'" + name + "' is a function; call it as (" + name + ")", pos)
        else:
            self.error("undefined name '" + name + "'", pos)
        return None


def check(module: TModule) -> list[DeclarationError]:
    """Check a parsed TModule. Returns a list of errors (empty = ok)."""
    checker = Checker()
    checker.collect_declarations(module)
    if len(checker.errors) > 0:
        return checker.errors
    checker.check_bodies(module)
    return checker.errors
