"""GGB parser: recursive descent, one method per grammar production."""

from __future__ import annotations

from .ast import (
    Pos,
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
from .errors import ParseError
from .tokens import TK_EOF, TK_IDENT, TK_INT, TK_OP, TK_TYPE, Token, int_value

ASSIGN_OPS: set[str] = {"=", "+=", "-="}

ARITH_OPS: set[str] = {"+", "-", "*", "/", "%", "^", "<<", ">>"}

COMPARE_OPS: set[str] = {"==", "!=", "<", "<=", ">", ">="}

LOGIC_OPS: set[str] = {"|", "&"}

BINARY_OPS: set[str] = ARITH_OPS | COMPARE_OPS | LOGIC_OPS

# blocks and bracketed expressions, counted together
MAX_NESTING = 200


class Parser:
    """Recursive descent parser for GGB."""

    def __init__(self, tokens: list[Token]):
        self.tokens: list[Token] = tokens
        self.pos: int = 0
        self.depth: int = 0

    # ── Helpers ──────────────────────────────────────────────

    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int) -> Token:
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return self.tokens[len(self.tokens) - 1]
        return self.tokens[idx]

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.type != TK_EOF:
            self.pos += 1
        return tok

    def at(self, value: str) -> bool:
        tok = self.current()
        return tok.value == value and tok.type != TK_EOF

    def at_type(self, type_: str) -> bool:
        return self.current().type == type_

    def expect(self, value: str) -> Token:
        tok = self.current()
        if tok.value != value or tok.type == TK_EOF:
            raise self.error("expected '" + value + "', got " + _describe(tok))
        return self.advance()

    def expect_ident(self) -> Token:
        tok = self.current()
        if tok.type != TK_IDENT:
            raise self.error("expected identifier, got " + _describe(tok))
        return self.advance()

    def expect_int(self) -> Token:
        tok = self.current()
        if tok.type != TK_INT:
            raise self.error("expected integer literal, got " + _describe(tok))
        return self.advance()

    def error(self, msg: str) -> ParseError:
        return ParseError(msg, self._pos())

    def _pos(self) -> Pos:
        tok = self.current()
        return Pos(tok.line, tok.col)

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise self.error("nesting exceeds " + str(MAX_NESTING) + " levels")

    def _skip_semicolons(self) -> None:
        while self.at(";"):
            self.advance()

    # ── Top Level ────────────────────────────────────────────

    def parse_program(self) -> TModule:
        items: list[TDecl | TStmt] = []
        self._skip_semicolons()
        while not self.at_type(TK_EOF):
            items.append(self.parse_item())
            self._skip_semicolons()
        return TModule(items)

    def parse_item(self) -> TDecl | TStmt:
        if self.at("fn"):
            return self.parse_fn_decl()
        if self.at("const"):
            return self.parse_const_decl()
        return self.parse_stmt()

    def parse_fn_decl(self) -> TFnDecl:
        pos = self._pos()
        self.expect("fn")
        name_tok = self.expect_ident()
        params: list[TParam] = []
        has_parens = False
        if self.at("("):
            has_parens = True
            self.advance()
            while not self.at(")"):
                params.append(self.parse_param())
                if self.at(","):
                    self.advance()
            self.expect(")")
        ret: TType | None = None
        if self.at(":"):
            self.advance()
            ret = self.parse_type()
        body = self.parse_block()
        return TFnDecl(pos, name_tok.value, params, ret, body, has_parens)

    def parse_param(self) -> TParam:
        pos = self._pos()
        name_tok = self.expect_ident()
        self.expect(":")
        typ = self.parse_type()
        return TParam(pos, name_tok.value, typ)

    def parse_const_decl(self) -> TConstDecl:
        pos = self._pos()
        self.expect("const")
        name_tok = self.expect_ident()
        self.expect(":")
        typ = self.parse_type()
        if not isinstance(typ, TArrayType):
            raise ParseError("const '" + name_tok.value + "' must have an array type", typ.pos)
        self.expect("=")
        self.expect("[")
        values: list[TIntLit] = []
        while not self.at("]"):
            tok = self.expect_int()
            lit = TIntLit(tok.pos, int_value(tok.value), tok.value)
            if lit.value >= 1 << typ.element.width:
                raise ParseError(
                    "literal " + tok.value + " does not fit u" + str(typ.element.width),
                    lit.pos,
                )
            values.append(lit)
            if self.at(","):
                self.advance()
        self.expect("]")
        if len(values) != typ.length:
            raise ParseError(
                "const '"
                + name_tok.value
                + "' has "
                + str(len(values))
                + " elements, type declares "
                + str(typ.length),
                pos,
            )
        return TConstDecl(pos, name_tok.value, typ, values)

    def parse_static_decl(self) -> TStaticDecl:
        pos = self._pos()
        self.expect("static")
        address: int | None = None
        if self.at("@"):
            self.advance()
            address = int_value(self.expect_int().value)
        name_tok = self.expect_ident()
        self.expect(":")
        typ = self.parse_type()
        return TStaticDecl(pos, name_tok.value, typ, address)

    def parse_block(self) -> list[TStmt]:
        self._enter()
        self.expect("{")
        stmts: list[TStmt] = []
        self._skip_semicolons()
        while not self.at("}"):
            if self.at_type(TK_EOF):
                raise self.error("unterminated block, expected '}'")
            stmts.append(self.parse_stmt())
            self._skip_semicolons()
        self.expect("}")
        self.depth -= 1
        return stmts

    # ── Types ────────────────────────────────────────────────

    def parse_type(self) -> TType:
        """Type = TYPE | '[' TYPE INT ']'"""
        pos = self._pos()
        tok = self.current()
        if tok.type == TK_TYPE:
            self.advance()
            return TUint(pos, int(tok.value[1:]))
        if self.at("["):
            self.advance()
            elem_tok = self.current()
            if elem_tok.type != TK_TYPE:
                raise self.error("array element must be an unsigned type, got " + _describe(elem_tok))
            self.advance()
            elem = TUint(elem_tok.pos, int(elem_tok.value[1:]))
            len_tok = self.expect_int()
            length = int_value(len_tok.value)
            if length == 0:
                raise ParseError("array length must be positive", len_tok.pos)
            self.expect("]")
            return TArrayType(pos, elem, length)
        raise self.error("expected type, got " + _describe(tok))

    # ── Statements ───────────────────────────────────────────

    def parse_stmt(self) -> TStmt:
        tok = self.current()
        if tok.type == TK_EOF:
            raise self.error("expected statement, got end of input")
        if tok.value == "let":
            return self.parse_let_stmt()
        if tok.value == "if":
            return self.parse_if_stmt()
        if tok.value == "for":
            return self.parse_for_stmt()
        if tok.value == "loop":
            pos = self._pos()
            self.advance()
            return TLoopStmt(pos, self.parse_block())
        if tok.value == "break":
            pos = self._pos()
            self.advance()
            return TBreakStmt(pos)
        if tok.value == "continue":
            pos = self._pos()
            self.advance()
            return TContinueStmt(pos)
        if tok.value == "return":
            return self.parse_return_stmt()
        if tok.value == "static":
            return self.parse_static_decl()
        if tok.value == "!!" and tok.type == TK_OP:
            pos = self._pos()
            self.advance()
            return TPanicStmt(pos)
        if tok.value in ("fn", "const"):
            raise self.error("'" + tok.value + "' declarations are only allowed at top level")
        if tok.value == "(" and self.peek(1).value in ASSIGN_OPS and self.peek(1).type == TK_OP:
            return self.parse_assign_stmt()
        pos = self._pos()
        return TExprStmt(pos, self.parse_expr())

    def parse_let_stmt(self) -> TLetStmt:
        pos = self._pos()
        self.expect("let")
        name_tok = self.expect_ident()
        self.expect(":")
        typ = self.parse_type()
        self.expect("=")
        value = self.parse_expr()
        return TLetStmt(pos, name_tok.value, typ, value)

    def parse_if_stmt(self) -> TIfStmt:
        pos = self._pos()
        self.expect("if")
        cond = self.parse_expr()
        then_body = self.parse_block()
        else_body: list[TStmt] | None = None
        if self.at("else"):
            self.advance()
            if self.at("if"):
                self._enter()
                else_body = [self.parse_if_stmt()]
                self.depth -= 1
            else:
                else_body = self.parse_block()
        return TIfStmt(pos, cond, then_body, else_body)

    def parse_for_stmt(self) -> TForStmt:
        pos = self._pos()
        self.expect("for")
        name_tok = self.expect_ident()
        self.expect(":")
        typ = self.parse_type()
        self.expect("in")
        start = self.parse_expr()
        self.expect("..")
        end = self.parse_expr()
        body = self.parse_block()
        return TForStmt(pos, name_tok.value, typ, start, end, body)

    def parse_return_stmt(self) -> TReturnStmt:
        ret_tok = self.expect("return")
        value: TExpr | None = None
        # the value must start on the same line as `return`
        if self._at_expr_start() and self.current().line == ret_tok.line:
            value = self.parse_expr()
        return TReturnStmt(ret_tok.pos, value)

    def parse_assign_stmt(self) -> TAssignStmt:
        pos = self._pos()
        self.expect("(")
        op = self.advance().value
        target = self.parse_lvalue()
        value = self.parse_expr()
        if not self.at(")"):
            raise self.error("'" + op + "' takes exactly 2 operands")
        self.advance()
        return TAssignStmt(pos, op, target, value)

    def parse_lvalue(self) -> TVar | TIndex:
        tok = self.current()
        if tok.type == TK_IDENT:
            self.advance()
            return TVar(tok.pos, tok.value)
        if self.at("["):
            return self.parse_index()
        raise self.error("expected assignment target, got " + _describe(tok))

    def _at_expr_start(self) -> bool:
        tok = self.current()
        if tok.type in (TK_INT, TK_IDENT):
            return True
        return tok.type == TK_OP and tok.value in ("(", "[")

    # ── Expressions ──────────────────────────────────────────

    def parse_expr(self) -> TExpr:
        tok = self.current()
        if tok.type == TK_INT:
            self.advance()
            return TIntLit(tok.pos, int_value(tok.value), tok.value)
        if tok.type == TK_IDENT:
            self.advance()
            return TVar(tok.pos, tok.value)
        if self.at("[") or self.at("("):
            self._enter()
            expr = self.parse_index() if self.at("[") else self.parse_compound()
            self.depth -= 1
            return expr
        raise self.error("expected expression, got " + _describe(tok))

    def parse_index(self) -> TIndex:
        pos = self._pos()
        self.expect("[")
        index = self.parse_expr()
        self.expect("]")
        name_tok = self.expect_ident()
        return TIndex(pos, name_tok.value, index)

    def parse_compound(self) -> TExpr:
        """PrefixOp = '(' op Expr Expr ')' ; Call = '(' name Expr* ')'"""
        pos = self._pos()
        self.expect("(")
        head = self.current()
        if head.type == TK_OP and head.value in BINARY_OPS:
            self.advance()
            operands: list[TExpr] = []
            while not self.at(")"):
                if self.at_type(TK_EOF):
                    raise self.error("unterminated expression, expected ')'")
                operands.append(self.parse_expr())
            if len(operands) != 2:
                raise ParseError(
                    "operator '"
                    + head.value
                    + "' takes exactly 2 operands, got "
                    + str(len(operands)),
                    pos,
                )
            self.advance()
            return TBinaryOp(pos, head.value, operands[0], operands[1])
        if head.type == TK_OP and head.value in ASSIGN_OPS:
            raise self.error("assignment is a statement, not an expression")
        if head.type == TK_IDENT:
            self.advance()
            args: list[TExpr] = []
            while not self.at(")"):
                if self.at_type(TK_EOF):
                    raise self.error("unterminated call, expected ')'")
                args.append(self.parse_expr())
            self.advance()
            return TCall(pos, head.value, args)
        raise self.error("expected operator or function name, got " + _describe(head))


def _describe(tok: Token) -> str:
    if tok.type == TK_EOF:
        return "end of input"
    return "'" + tok.value + "'"
