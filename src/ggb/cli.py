"""GGB CLI: run .ggb files and print their statics."""

from __future__ import annotations

import dataclasses
import logging
import sys

from . import parse
from .errors import ExplicitPanic, GgbError, RuntimeFault
from .runtime import OVERFLOW_TRAP, RunResult, RuntimeConfig, run


USAGE: str = """\
ggb [OPTIONS] FILE

Run a GGB (.ggb) program and print its static slots.

Options:
  --trap-overflow  Raise a runtime error on arithmetic overflow instead of wrapping
  --max-depth N    Maximum call depth (default 256)
  --dump N         Print the first N bytes of the memory image instead
  --verbose        Log evaluation to stderr
  --help           Show this help message
"""


def _int_arg(flag: str, value: str | None) -> int | None:
    if value is None:
        print("ggb: " + flag + " needs a value", file=sys.stderr)
        return None
    try:
        n = int(value, 0)
    except ValueError:
        print("ggb: " + flag + ": invalid number '" + value + "'", file=sys.stderr)
        return None
    if n < 1:
        print("ggb: " + flag + " must be positive", file=sys.stderr)
        return None
    return n


def format_statics(result: RunResult) -> str:
    lines: list[str] = []
    for name, value in result.statics.items():
        lines.append(name + " = " + str(value))
    return "".join(line + "\n" for line in lines)


def format_dump(image: bytes) -> str:
    """addr | hex (dec), one row per byte."""
    lines: list[str] = []
    for addr, b in enumerate(image):
        lines.append(format(addr, "04x") + " | " + format(b, "02x") + " (" + str(b) + ")")
    return "".join(line + "\n" for line in lines)


def main(argv: list[str] | None = None) -> int:
    args = argv if argv is not None else sys.argv[1:]
    filepath: str = ""
    trap_overflow = False
    max_depth: int | None = None
    dump: int | None = None
    verbose = False
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--help" or arg == "-h":
            print(USAGE, end="")
            return 0
        elif arg == "--trap-overflow":
            trap_overflow = True
            i += 1
        elif arg == "--max-depth" or arg == "--dump":
            n = _int_arg(arg, args[i + 1] if i + 1 < len(args) else None)
            if n is None:
                return 2
            if arg == "--dump":
                dump = n
            else:
                max_depth = n
            i += 2
        elif arg == "--verbose" or arg == "-v":
            verbose = True
            i += 1
        elif arg.startswith("-"):
            print("ggb: unknown flag '" + arg + "'", file=sys.stderr)
            return 2
        elif filepath == "":
            filepath = arg
            i += 1
        else:
            print("ggb: unexpected argument '" + arg + "'", file=sys.stderr)
            return 2
    if filepath == "":
        print("ggb: missing file argument", file=sys.stderr)
        return 2

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(name)s: %(message)s", stream=sys.stderr
        )

    try:
        with open(filepath, "rb") as f:
            raw = f.read()
    except FileNotFoundError:
        print("ggb: " + filepath + ": No such file or directory", file=sys.stderr)
        return 1
    except OSError as e:
        print("ggb: " + filepath + ": " + str(e), file=sys.stderr)
        return 1
    try:
        source = raw.decode("utf-8")
    except ValueError:
        print("ggb: " + filepath + ": invalid utf-8", file=sys.stderr)
        return 1

    try:
        module = parse(source)
        config = RuntimeConfig.from_module(module)
        if trap_overflow:
            config = dataclasses.replace(config, overflow=OVERFLOW_TRAP)
        if max_depth is not None:
            config = dataclasses.replace(config, max_depth=max_depth)
        result = run(module, config=config)
    except GgbError as e:
        print("ggb: " + e.kind + ": " + str(e), file=sys.stderr)
        if isinstance(e, (RuntimeFault, ExplicitPanic)) and e.trace:
            print("ggb: trace: " + " > ".join(e.trace), file=sys.stderr)
        return 1

    if dump is not None:
        sys.stdout.write(format_dump(result.image(dump)))
    else:
        sys.stdout.write(format_statics(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
