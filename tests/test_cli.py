"""CLI tests for the ggb entry point."""

from pathlib import Path

import pytest

from ggb.cli import main

PROGRAMS_DIR = Path(__file__).parent / "programs"


def _write(tmp_path: Path, source: str) -> str:
    path = tmp_path / "prog.ggb"
    path.write_text(source)
    return str(path)


def test_prints_statics(capsys):
    assert main([str(PROGRAMS_DIR / "arithmetic.ggb")]) == 0
    out = capsys.readouterr().out
    assert out == "MUL = 225\nDIV = 45\n"


def test_prints_function_statics_and_arrays(tmp_path, capsys):
    path = _write(tmp_path, "fn f { static S:[u8 2] (= [1]S 7) }\n(f)\n")
    assert main([path]) == 0
    assert capsys.readouterr().out == "f::S = [0 7]\n"


def test_dump_memory_image(capsys):
    assert main(["--dump", "3", str(PROGRAMS_DIR / "arithmetic.ggb")]) == 0
    out = capsys.readouterr().out
    assert out == "0000 | e1 (225)\n0001 | 2d (45)\n0002 | 00 (0)\n"


def test_trap_overflow_flag(tmp_path, capsys):
    path = _write(tmp_path, "static R:u8\n(= R (+ 200 100))\n")
    assert main([path]) == 0
    assert capsys.readouterr().out == "R = 44\n"
    assert main(["--trap-overflow", path]) == 1
    assert "ggb: RuntimeError: arithmetic overflow" in capsys.readouterr().err


def test_max_depth_flag(tmp_path, capsys):
    path = _write(tmp_path, "fn f(n:u8) { (f n) }\n(f 0)\n")
    assert main(["--max-depth", "5", path]) == 1
    err = capsys.readouterr().err
    assert "stack exhausted: call depth exceeds 5" in err
    assert "ggb: trace: f > f > f > f > f" in err


def test_panic_reports_kind(capsys):
    assert main([str(PROGRAMS_DIR / "fibonacci_overflow.ggb")]) == 1
    err = capsys.readouterr().err
    assert err.startswith("ggb: ExplicitPanic: explicit panic in fibonacci")


@pytest.mark.parametrize(
    "source,kind",
    [
        ("static R:u8 $", "LexError"),
        ("(+ 1)", "ParseError"),
        ("(= R 1)", "DeclarationError"),
    ],
)
def test_error_kinds(tmp_path, capsys, source, kind):
    assert main([_write(tmp_path, source)]) == 1
    assert capsys.readouterr().err.startswith("ggb: " + kind + ": ")


def test_missing_file(tmp_path, capsys):
    assert main([str(tmp_path / "nope.ggb")]) == 1
    assert "No such file or directory" in capsys.readouterr().err


@pytest.mark.parametrize(
    "argv",
    [
        [],
        ["--bogus", "x.ggb"],
        ["a.ggb", "b.ggb"],
        ["--max-depth"],
        ["--max-depth", "zero", "x.ggb"],
        ["--dump", "0", "x.ggb"],
    ],
)
def test_usage_errors(argv, capsys):
    assert main(argv) == 2
    assert capsys.readouterr().err.startswith("ggb: ")


def test_help(capsys):
    assert main(["--help"]) == 0
    assert capsys.readouterr().out.startswith("ggb [OPTIONS] FILE")


def test_verbose_logs_calls(tmp_path, caplog):
    path = _write(tmp_path, "fn f { }\n(f)\n")
    with caplog.at_level("DEBUG", logger="ggb"):
        assert main(["--verbose", path]) == 0
    assert any("call f" in r.getMessage() for r in caplog.records)
