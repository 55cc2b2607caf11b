"""GGB tokenizer: lexes source into a flat token list."""

from __future__ import annotations

from .ast import Pos
from .errors import LexError


# Token type constants
TK_INT = "INT"
TK_TYPE = "TYPE"
TK_IDENT = "IDENT"
TK_OP = "OP"
TK_EOF = "EOF"

KEYWORDS: set[str] = {
    "break",
    "const",
    "continue",
    "else",
    "fn",
    "for",
    "if",
    "in",
    "let",
    "loop",
    "return",
    "static",
}

# Multi-character operators, sorted by length descending for greedy matching
MULTI_OPS: list[str] = [
    "==",
    "!=",
    "<=",
    ">=",
    "<<",
    ">>",
    "+=",
    "-=",
    "!!",
    "..",
]

SINGLE_OPS: set[str] = {
    "+",
    "-",
    "*",
    "/",
    "%",
    "^",
    "|",
    "&",
    "<",
    ">",
    "=",
    "(",
    ")",
    "[",
    "]",
    "{",
    "}",
    ":",
    ",",
    ";",
    "@",
}


class Token:
    """A token with type, value, and position."""

    def __init__(self, type_: str, value: str, line: int, col: int):
        self.type: str = type_
        self.value: str = value
        self.line: int = line
        self.col: int = col

    @property
    def pos(self) -> Pos:
        return Pos(self.line, self.col)

    def __repr__(self) -> str:
        return (
            "Token("
            + self.type
            + ", "
            + repr(self.value)
            + ", "
            + str(self.line)
            + ", "
            + str(self.col)
            + ")"
        )


def _is_digit(c: str) -> bool:
    return c >= "0" and c <= "9"


def _is_hex(c: str) -> bool:
    return (c >= "0" and c <= "9") or (c >= "a" and c <= "f") or (c >= "A" and c <= "F")


def _is_alpha(c: str) -> bool:
    return (c >= "a" and c <= "z") or (c >= "A" and c <= "Z") or c == "_"


def _is_alnum(c: str) -> bool:
    return _is_alpha(c) or _is_digit(c)


def is_type_name(word: str) -> bool:
    """u<width> with a nonzero width and no leading zero."""
    return len(word) > 1 and word[0] == "u" and word[1:].isdigit() and word[1] != "0"


def int_value(raw: str) -> int:
    """Value of an INT token spelling (decimal or 0x-prefixed hex)."""
    if raw[:2] in ("0x", "0X"):
        return int(raw[2:], 16)
    return int(raw, 10)


def tokenize(source: str) -> list[Token]:
    """Tokenize GGB source into a flat list ending with TK_EOF."""
    tokens: list[Token] = []
    pos = 0
    line = 1
    col = 1
    length = len(source)

    while pos < length:
        c = source[pos]

        # Newlines
        if c == "\n":
            pos += 1
            line += 1
            col = 1
            continue

        # Whitespace
        if c == " " or c == "\t" or c == "\r":
            pos += 1
            col += 1
            continue

        # Line comment: //
        if c == "/" and pos + 1 < length and source[pos + 1] == "/":
            while pos < length and source[pos] != "\n":
                pos += 1
            continue

        start_pos = pos
        start_line = line
        start_col = col

        # Number: decimal or 0x hex
        if _is_digit(c):
            if (
                c == "0"
                and pos + 1 < length
                and (source[pos + 1] == "x" or source[pos + 1] == "X")
            ):
                pos += 2
                col += 2
                hex_start = pos
                while pos < length and _is_hex(source[pos]):
                    pos += 1
                    col += 1
                if pos == hex_start:
                    raise LexError(
                        "hex literal needs at least one digit", Pos(start_line, start_col)
                    )
            else:
                while pos < length and _is_digit(source[pos]):
                    pos += 1
                    col += 1
            if pos < length and _is_alnum(source[pos]):
                raise LexError(
                    "malformed integer literal: "
                    + repr(source[start_pos : pos + 1]),
                    Pos(start_line, start_col),
                )
            tokens.append(Token(TK_INT, source[start_pos:pos], start_line, start_col))
            continue

        # Identifier, type name or keyword
        if _is_alpha(c):
            while pos < length and _is_alnum(source[pos]):
                pos += 1
                col += 1
            word = source[start_pos:pos]
            if word in KEYWORDS:
                tokens.append(Token(word, word, start_line, start_col))
            elif is_type_name(word):
                tokens.append(Token(TK_TYPE, word, start_line, start_col))
            else:
                tokens.append(Token(TK_IDENT, word, start_line, start_col))
            continue

        # Multi-character operators
        matched = False
        for op in MULTI_OPS:
            op_len = len(op)
            if pos + op_len <= length and source[pos : pos + op_len] == op:
                tokens.append(Token(TK_OP, op, start_line, start_col))
                pos += op_len
                col += op_len
                matched = True
                break
        if matched:
            continue

        # Single-character operators
        if c in SINGLE_OPS:
            tokens.append(Token(TK_OP, c, start_line, start_col))
            pos += 1
            col += 1
            continue

        raise LexError("unexpected character: " + repr(c), Pos(line, col))

    tokens.append(Token(TK_EOF, "", line, col))
    return tokens
