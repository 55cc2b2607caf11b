"""GGB emitter: converts an AST back into canonical GGB source.

Total over the parse-time AST in `ggb/ast.py`; a new node type needs a case
here too. Emitting the result of parsing emitted text gives the same text.
"""

from __future__ import annotations

from .ast import (
    TArrayType,
    TAssignStmt,
    TBinaryOp,
    TBreakStmt,
    TCall,
    TConstDecl,
    TContinueStmt,
    TDecl,
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
    TParam,
    TReturnStmt,
    TStaticDecl,
    TStmt,
    TType,
    TUint,
    TVar,
)


def to_source(module: TModule) -> str:
    """Render a `TModule` back into GGB source text."""
    return _Emitter().emit_module(module)


class _Emitter:
    _INDENT: str = "    "

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._indent_level: int = 0

    # ── Public ──────────────────────────────────────────────

    def emit_module(self, module: TModule) -> str:
        self._lines = []
        self._indent_level = 0
        if module.trap_overflow:
            self._emit_line("// pragma trap-overflow")
        if module.max_depth is not None:
            self._emit_line("// pragma max-depth " + str(module.max_depth))
        prev: TDecl | TStmt | None = None
        for item in module.items:
            # functions are set off by blank lines
            if self._lines and (isinstance(item, TFnDecl) or isinstance(prev, TFnDecl)):
                self._lines.append("")
            self._emit_item(item)
            prev = item
        text = "\n".join(self._lines)
        if text == "":
            return ""
        return text + "\n"

    # ── Lines / Blocks ──────────────────────────────────────

    def _emit_line(self, line: str) -> None:
        self._lines.append(self._INDENT * self._indent_level + line)

    def _emit_stmt_block(self, stmts: list[TStmt]) -> None:
        self._indent_level += 1
        for stmt in stmts:
            self._emit_stmt(stmt)
        self._indent_level -= 1

    # ── Items ───────────────────────────────────────────────

    def _emit_item(self, item: TDecl | TStmt) -> None:
        if isinstance(item, TFnDecl):
            self._emit_fn_decl(item)
            return
        if isinstance(item, TConstDecl):
            values = " ".join(v.raw for v in item.values)
            self._emit_line(
                "const " + item.name + ":" + self._render_type(item.typ) + " = [" + values + "]"
            )
            return
        if isinstance(item, TStmt):
            self._emit_stmt(item)
            return
        raise TypeError("unhandled item type")

    def _emit_fn_decl(self, decl: TFnDecl) -> None:
        header = "fn " + decl.name
        if decl.params or decl.has_parens:
            header += "(" + self._render_param_list(decl.params) + ")"
        if decl.ret is not None:
            header += ":" + self._render_type(decl.ret)
        self._emit_line(header + " {")
        self._emit_stmt_block(decl.body)
        self._emit_line("}")

    def _render_param_list(self, params: list[TParam]) -> str:
        return " ".join(p.name + ":" + self._render_type(p.typ) for p in params)

    # ── Stmts ───────────────────────────────────────────────

    def _emit_stmt(self, stmt: TStmt) -> None:
        if isinstance(stmt, TLetStmt):
            self._emit_line(
                "let "
                + stmt.name
                + ":"
                + self._render_type(stmt.typ)
                + " = "
                + self._render_expr(stmt.value)
            )
            return
        if isinstance(stmt, TAssignStmt):
            self._emit_line(
                "("
                + stmt.op
                + " "
                + self._render_expr(stmt.target)
                + " "
                + self._render_expr(stmt.value)
                + ")"
            )
            return
        if isinstance(stmt, TStaticDecl):
            line = "static"
            if stmt.address is not None:
                line += "@" + _hex(stmt.address)
            self._emit_line(line + " " + stmt.name + ":" + self._render_type(stmt.typ))
            return
        if isinstance(stmt, TReturnStmt):
            if stmt.value is None:
                self._emit_line("return")
            else:
                self._emit_line("return " + self._render_expr(stmt.value))
            return
        if isinstance(stmt, TBreakStmt):
            self._emit_line("break")
            return
        if isinstance(stmt, TContinueStmt):
            self._emit_line("continue")
            return
        if isinstance(stmt, TPanicStmt):
            self._emit_line("!!")
            return
        if isinstance(stmt, TExprStmt):
            self._emit_line(self._render_expr(stmt.expr))
            return
        if isinstance(stmt, TIfStmt):
            self._emit_if_chain(stmt)
            return
        if isinstance(stmt, TForStmt):
            self._emit_line(
                "for "
                + stmt.name
                + ":"
                + self._render_type(stmt.typ)
                + " in "
                + self._render_expr(stmt.start)
                + ".."
                + self._render_expr(stmt.end)
                + " {"
            )
            self._emit_stmt_block(stmt.body)
            self._emit_line("}")
            return
        if isinstance(stmt, TLoopStmt):
            self._emit_line("loop {")
            self._emit_stmt_block(stmt.body)
            self._emit_line("}")
            return
        raise TypeError("unhandled stmt type")

    def _emit_if_chain(self, stmt: TIfStmt) -> None:
        self._emit_line("if " + self._render_expr(stmt.cond) + " {")
        self._emit_stmt_block(stmt.then_body)
        cur = stmt
        while cur.else_body is not None:
            # `else if` parses to an else block holding a single if
            if len(cur.else_body) == 1 and isinstance(cur.else_body[0], TIfStmt):
                cur = cur.else_body[0]
                self._emit_line("} else if " + self._render_expr(cur.cond) + " {")
                self._emit_stmt_block(cur.then_body)
                continue
            self._emit_line("} else {")
            self._emit_stmt_block(cur.else_body)
            break
        self._emit_line("}")

    # ── Types / Exprs ───────────────────────────────────────

    def _render_type(self, typ: TType) -> str:
        if isinstance(typ, TUint):
            return "u" + str(typ.width)
        if isinstance(typ, TArrayType):
            return "[u" + str(typ.element.width) + " " + str(typ.length) + "]"
        raise TypeError("unhandled type node")

    def _render_expr(self, expr: TExpr) -> str:
        if isinstance(expr, TIntLit):
            return expr.raw
        if isinstance(expr, TVar):
            return expr.name
        if isinstance(expr, TIndex):
            return "[" + self._render_expr(expr.index) + "]" + expr.name
        if isinstance(expr, TBinaryOp):
            return (
                "("
                + expr.op
                + " "
                + self._render_expr(expr.left)
                + " "
                + self._render_expr(expr.right)
                + ")"
            )
        if isinstance(expr, TCall):
            if not expr.args:
                return "(" + expr.func + ")"
            return "(" + expr.func + " " + " ".join(self._render_expr(a) for a in expr.args) + ")"
        raise TypeError("unhandled expr type")


def _hex(value: int) -> str:
    return "0x" + format(value, "04X")
