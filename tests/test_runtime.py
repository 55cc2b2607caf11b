"""Tests for the GGB runtime API: configuration, results and error details."""

import sys

import pytest

from ggb import (
    DeclarationError,
    ExplicitPanic,
    ParseError,
    RunResult,
    RuntimeConfig,
    RuntimeFault,
    check,
    emit,
    parse,
    run,
    run_source,
)
from ggb.memory import Scalar


def _run_binary(op: str, a: int, b: int) -> int:
    src = "static R:u8\nstatic A:u8\nstatic B:u8\n"
    src += f"(= A {a})\n(= B {b})\n(= R ({op} A B))\n"
    return run_source(src).values()["R"]


def test_addition_and_subtraction_wrap_modulo_width():
    for a, b in [(0, 0), (1, 255), (128, 128), (200, 100), (255, 255), (7, 9)]:
        assert _run_binary("+", a, b) == (a + b) % 256
        assert _run_binary("-", a, b) == (a - b) % 256


def test_config_overrides_pragmas():
    module = parse("// pragma trap-overflow\nstatic R:u8\n(= R (+ 255 1))\n")
    with pytest.raises(RuntimeFault):
        run(module)
    result = run(module, config=RuntimeConfig(overflow="wrap"))
    assert result.values() == {"R": 0}


def test_config_from_module():
    module = parse("// pragma max-depth 12\n")
    config = RuntimeConfig.from_module(module)
    assert config.max_depth == 12
    assert config.overflow == "wrap"


def test_config_validation():
    with pytest.raises(ValueError):
        RuntimeConfig(overflow="saturate")
    with pytest.raises(ValueError):
        RuntimeConfig(max_depth=0)


def test_run_result_snapshot():
    result = run_source("static@0x0000 X:u16\nstatic A:[u8 2]\n(= X 0x1234)\n(= [1]A 3)\n")
    assert isinstance(result, RunResult)
    assert result.statics["X"] == Scalar(16, 0x1234)
    assert result.values() == {"X": 0x1234, "A": [0, 3]}
    assert result.image(4) == bytes([0x34, 0x12, 0x00, 0x00])


def test_run_result_is_detached_from_later_runs():
    module = parse("static R:u8\n(+= R 1)\n")
    first = run(module)
    second = run(module)
    assert first.values() == {"R": 1}
    assert second.values() == {"R": 1}


def test_panic_carries_call_trace():
    src = (
        "fn inner { !! }\n"
        "fn outer { (inner) }\n"
        "(outer)\n"
    )
    with pytest.raises(ExplicitPanic) as exc:
        run_source(src)
    assert exc.value.trace == ["outer", "inner"]
    assert exc.value.kind == "ExplicitPanic"
    assert exc.value.line == 1


def test_runtime_fault_position():
    with pytest.raises(RuntimeFault) as exc:
        run_source("static A:[u8 2]\nstatic R:u8\n(= R [5]A)\n")
    assert exc.value.kind == "RuntimeError"
    assert exc.value.to_dict()["line"] == 3


def test_first_declaration_error_is_raised():
    with pytest.raises(DeclarationError) as exc:
        run_source("(= X 1)\n(= Y 2)\n")
    assert "'X'" in exc.value.msg


def test_stack_exhausted_at_max_depth():
    src = "fn f(n:u8) { (f n) }\n(f 0)\n"
    with pytest.raises(RuntimeFault) as exc:
        run(parse(src), config=RuntimeConfig(max_depth=40))
    assert "stack exhausted" in str(exc.value)
    assert len(exc.value.trace) == 40


def test_deep_recursion_within_default_limit():
    src = (
        "static R:u8\n"
        "fn down(n:u8):u8 {\n"
        "    if (== n 0) { return 0 }\n"
        "    return (+ 1 (down (- n 1)))\n"
        "}\n"
        "(= R (down 250))\n"
    )
    assert run_source(src).values() == {"R": 250}


def test_recursion_limit_is_restored():
    before = sys.getrecursionlimit()
    run_source("fn f { }\n(f)\n")
    with pytest.raises(ExplicitPanic):
        run_source("!!\n")
    assert sys.getrecursionlimit() == before


def test_wide_shift_does_not_allocate_huge_ints():
    result = run_source("static R:u64\nstatic S:u64\n(= S 0xFFFFFFFFFFFFFFFF)\n(= R (<< 1 S))\n")
    assert result.values()["R"] == 0


def _nested_sum(levels: int) -> str:
    return "(+ 1 " * levels + "0" + ")" * levels


def test_nesting_at_the_limit_runs():
    src = "static R:u8\n(= R " + _nested_sum(200) + ")\n"
    assert check(src) == []
    assert run_source(src).values() == {"R": 200}
    assert run_source(emit(parse(src))).values() == {"R": 200}


def test_expression_nested_too_deeply():
    src = "static R:u16\n(= R " + _nested_sum(600) + ")\n"
    with pytest.raises(ParseError) as exc:
        run_source(src)
    assert "nesting exceeds 200 levels" in exc.value.msg
    assert (exc.value.line, exc.value.col) == (2, 1006)


def test_blocks_nested_too_deeply():
    src = "static R:u8\n" + "if 1 { " * 250 + "(= R 1)" + " }" * 250 + "\n"
    with pytest.raises(ParseError) as exc:
        parse(src)
    assert "nesting exceeds" in exc.value.msg
    with pytest.raises(ParseError):
        check(src)
