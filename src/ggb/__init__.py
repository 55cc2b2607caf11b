"""GGB parser, checker and runtime: public API."""

from __future__ import annotations

import logging

from .ast import Pos, TModule
from .check import check as check_module
from .emit import to_source
from .errors import (
    DeclarationError as DeclarationError,
    ExplicitPanic as ExplicitPanic,
    GgbError as GgbError,
    LexError as LexError,
    ParseError as ParseError,
    RuntimeFault as RuntimeFault,
)
from .parse import Parser
from .runtime import RunResult as RunResult, RuntimeConfig as RuntimeConfig, run as run
from .tokens import tokenize

logging.getLogger(__name__).addHandler(logging.NullHandler())


def _extract_pragmas(source: str) -> tuple[bool, int | None]:
    """Scan leading comment lines for pragmas. Returns (trap_overflow, max_depth)."""
    trap_overflow = False
    max_depth: int | None = None
    for lineno, line in enumerate(source.split("\n"), start=1):
        stripped = line.strip()
        if stripped == "":
            continue
        if not stripped.startswith("//"):
            break
        body = stripped[2:].strip()
        if body == "pragma trap-overflow":
            trap_overflow = True
        elif body.startswith("pragma max-depth"):
            arg = body[len("pragma max-depth") :].strip()
            if not arg.isdigit() or int(arg) < 1:
                raise ParseError(
                    "pragma max-depth needs a positive integer, got " + repr(arg),
                    Pos(lineno, line.index("//") + 1),
                )
            max_depth = int(arg)
    return trap_overflow, max_depth


def parse(source: str) -> TModule:
    """Parse GGB source code into a TModule AST."""
    trap_overflow, max_depth = _extract_pragmas(source)
    tokens = tokenize(source)
    parser = Parser(tokens)
    module = parser.parse_program()
    module.trap_overflow = trap_overflow
    module.max_depth = max_depth
    return module


def check(source: str) -> list[DeclarationError]:
    """Parse and check GGB source. Returns list of errors (empty = ok)."""
    module = parse(source)
    return check_module(module)


def run_source(source: str, *, config: RuntimeConfig | None = None) -> RunResult:
    """Parse, check and run GGB source."""
    return run(parse(source), config=config)


def emit(module: TModule) -> str:
    """Emit a `TModule` AST to GGB textual syntax."""
    return to_source(module)
