"""Test runner for GGB phase tests and whole programs.

Phase tests live in <phase>/*.tests files. Format:

    === test name
    source code
    ---
    ok | error: <fragment> | dotted.path = value
    ---

Programs live in programs/*.ggb and carry their expectations in leading
`// expect:` comment lines, in the same assertion syntax.
"""

import signal
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from ggb import GgbError, check as ggb_check, parse as ggb_parse, run_source
from ggb.tokens import TK_EOF, tokenize

PHASE_TIMEOUT = 5
TESTS_DIR = Path(__file__).parent

TESTS = {
    "ggb_lex": {"dir": "lex", "run": "phase"},
    "ggb_parse": {"dir": "parse", "run": "phase"},
    "ggb_check": {"dir": "check", "run": "phase"},
    "ggb_run": {"dir": "run", "run": "phase"},
    "ggb_program": {"dir": "programs", "run": "program"},
}


# ---------------------------------------------------------------------------
# Timeout
# ---------------------------------------------------------------------------


def _timeout_handler(signum, frame):
    raise TimeoutError("phase timed out")


signal.signal(signal.SIGALRM, _timeout_handler)


# ---------------------------------------------------------------------------
# .tests file parsing
# ---------------------------------------------------------------------------


def parse_tests_file(path: Path) -> list[tuple[str, str, str]]:
    """Parse a .tests file into (name, input, expected) tuples."""
    lines = path.read_text().split("\n")
    result: list[tuple[str, str, str]] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if line.startswith("=== "):
            test_name = line[4:].strip()
            i += 1
            input_lines: list[str] = []
            while i < len(lines) and not lines[i].startswith("---"):
                input_lines.append(lines[i])
                i += 1
            if i < len(lines) and lines[i] == "---":
                i += 1
            expected_lines: list[str] = []
            while i < len(lines) and not lines[i].startswith("---"):
                expected_lines.append(lines[i])
                i += 1
            if i < len(lines) and lines[i] == "---":
                i += 1
            test_input = "\n".join(input_lines)
            expected = "\n".join(expected_lines).strip()
            result.append((test_name, test_input, expected))
        else:
            i += 1
    return result


def discover_cases(test_dir: Path) -> list[tuple[str, str, str]]:
    """Glob *.tests in test_dir, return (test_id, input, expected) tuples."""
    results = []
    for test_file in sorted(test_dir.glob("*.tests")):
        for name, input_code, expected in parse_tests_file(test_file):
            results.append((f"{test_file.stem}/{name}", input_code, expected))
    return results


def discover_programs(test_dir: Path) -> list[Path]:
    """Find all .ggb files in a directory."""
    return sorted(test_dir.glob("*.ggb"))


def program_expectations(source: str) -> str:
    """Collect the bodies of leading `// expect:` lines."""
    expected: list[str] = []
    for line in source.split("\n"):
        stripped = line.strip()
        if stripped.startswith("// expect:"):
            expected.append(stripped[len("// expect:") :].strip())
        elif stripped != "" and not stripped.startswith("//"):
            break
    return "\n".join(expected)


# ---------------------------------------------------------------------------
# Phase result + assertion checker
# ---------------------------------------------------------------------------


@dataclass
class PhaseResult:
    errors: list[str] = field(default_factory=list)
    data: dict | None = None


def resolve_dotpath(obj: object, path: str) -> object:
    """Resolve a dot-separated path against a nested dict/list structure."""
    parts = path.split(".")
    current = obj
    i = 0
    while i < len(parts):
        part = parts[i]
        if part == "length":
            return len(current)
        if isinstance(current, list):
            current = current[int(part)]
            i += 1
        elif isinstance(current, dict):
            if part in current:
                current = current[part]
                i += 1
            else:
                raise KeyError(part)
        else:
            raise KeyError(
                f"cannot traverse {type(current).__name__} with key {part!r}"
            )
    return current


def to_comparable(value: object) -> str:
    """Convert a value to its string form for comparison."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value
    return str(value)


def check_expected(expected: str, result: PhaseResult, phase: str) -> None:
    if expected == "ok":
        if result.errors:
            pytest.fail(f"Expected ok, got error: {result.errors[0]}")
        return
    if expected.startswith("error:"):
        expected_msg = expected[6:].strip()
        if not result.errors:
            pytest.fail(f"Expected error containing '{expected_msg}', got ok")
        found = any(expected_msg.lower() in e.lower() for e in result.errors)
        if not found:
            pytest.fail(
                f"Expected error containing '{expected_msg}', got: {result.errors}"
            )
        return
    # Dotpath assertions
    if result.errors:
        pytest.fail(f"{phase} failed: {result.errors[0]}")
    assert result.data is not None, f"No data returned from {phase}"
    for line in expected.split("\n"):
        line = line.strip()
        if not line:
            continue
        if "=" not in line:
            pytest.fail(f"Bad assertion (no '='): {line}")
        path, expected_val = line.split("=", 1)
        path = path.strip()
        expected_val = expected_val.strip()
        try:
            actual = resolve_dotpath(result.data, path)
        except (KeyError, IndexError, TypeError) as e:
            pytest.fail(f"Path '{path}' not found in result: {e}")
        actual_str = to_comparable(actual)
        if actual_str != expected_val:
            pytest.fail(
                f"Assertion failed: {path}\n"
                f"  expected: {expected_val!r}\n"
                f"  actual:   {actual_str!r}"
            )


# ---------------------------------------------------------------------------
# Phase runners
# ---------------------------------------------------------------------------


def _describe_error(e: GgbError) -> str:
    return e.kind + ": " + str(e)


def run_ggb_lex(source: str) -> PhaseResult:
    try:
        signal.alarm(PHASE_TIMEOUT)
        tokens = [
            {"type": t.type, "value": t.value, "line": t.line, "col": t.col}
            for t in tokenize(source)
            if t.type != TK_EOF
        ]
        return PhaseResult(data={"tokens": tokens})
    except GgbError as e:
        return PhaseResult(errors=[_describe_error(e)])
    finally:
        signal.alarm(0)


def run_ggb_parse(source: str) -> PhaseResult:
    try:
        signal.alarm(PHASE_TIMEOUT)
        module = ggb_parse(source)
        return PhaseResult(
            data={
                "items": len(module.items),
                "functions": [fn.name for fn in module.functions()],
                "trap_overflow": module.trap_overflow,
                "max_depth": module.max_depth,
            }
        )
    except GgbError as e:
        return PhaseResult(errors=[_describe_error(e)])
    finally:
        signal.alarm(0)


def run_ggb_check(source: str) -> PhaseResult:
    try:
        signal.alarm(PHASE_TIMEOUT)
        errors = ggb_check(source)
        if errors:
            return PhaseResult(errors=[_describe_error(e) for e in errors])
        return PhaseResult()
    except GgbError as e:
        return PhaseResult(errors=[_describe_error(e)])
    finally:
        signal.alarm(0)


def run_ggb_run(source: str) -> PhaseResult:
    try:
        signal.alarm(PHASE_TIMEOUT)
        result = run_source(source)
        return PhaseResult(data={"statics": result.values()})
    except GgbError as e:
        return PhaseResult(errors=[_describe_error(e)])
    finally:
        signal.alarm(0)


RUNNERS = {
    "ggb_lex": run_ggb_lex,
    "ggb_parse": run_ggb_parse,
    "ggb_check": run_ggb_check,
    "ggb_run": run_ggb_run,
}


# ---------------------------------------------------------------------------
# Parametrization
# ---------------------------------------------------------------------------


def pytest_generate_tests(metafunc):
    for name, cfg in TESTS.items():
        test_dir = TESTS_DIR / cfg["dir"]
        run = cfg["run"]
        if run == "phase":
            fixture = f"{name}_input"
            if fixture in metafunc.fixturenames:
                cases = discover_cases(test_dir)
                params = [pytest.param(inp, exp, id=tid) for tid, inp, exp in cases]
                metafunc.parametrize(f"{fixture},{name}_expected", params)
        elif run == "program" and "ggb_program" in metafunc.fixturenames:
            programs = discover_programs(test_dir)
            params = [pytest.param(p, id=p.stem) for p in programs]
            metafunc.parametrize("ggb_program", params)


# ---------------------------------------------------------------------------
# Test functions
# ---------------------------------------------------------------------------


def test_ggb_lex(ggb_lex_input, ggb_lex_expected):
    check_expected(ggb_lex_expected, RUNNERS["ggb_lex"](ggb_lex_input), "ggb_lex")


def test_ggb_parse(ggb_parse_input, ggb_parse_expected):
    check_expected(ggb_parse_expected, RUNNERS["ggb_parse"](ggb_parse_input), "ggb_parse")


def test_ggb_check(ggb_check_input, ggb_check_expected):
    check_expected(ggb_check_expected, RUNNERS["ggb_check"](ggb_check_input), "ggb_check")


def test_ggb_run(ggb_run_input, ggb_run_expected):
    check_expected(ggb_run_expected, RUNNERS["ggb_run"](ggb_run_input), "ggb_run")


def test_ggb_program(ggb_program: Path):
    """Run a .ggb program in-process against its `// expect:` header."""
    source = ggb_program.read_text()
    expected = program_expectations(source)
    assert expected, f"{ggb_program.name} has no '// expect:' lines"
    check_expected(expected, run_ggb_run(source), ggb_program.stem)
