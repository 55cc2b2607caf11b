"""GGB runtime: evaluate a checked module against its static environment.

A tree-walking evaluator. Calls use the host stack, bounded by
``RuntimeConfig.max_depth``; function-local statics are looked up in the
per-function registry of the StaticEnvironment, never in a frame.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
import sys
from typing import Callable, Iterator

from .ast import (
    Pos,
    TAssignStmt,
    TBinaryOp,
    TBreakStmt,
    TCall,
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
)
from .check import check
from .errors import DeclarationError, ExplicitPanic, RuntimeFault, _TracedError
from .memory import (
    Array,
    ConstArray,
    Program,
    Scalar,
    StaticEnvironment,
    StaticSlot,
    Ty,
    UintT,
    Value,
    build_program,
    resolve_type,
)
from .parse import ARITH_OPS, COMPARE_OPS, LOGIC_OPS

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 8
DEFAULT_MAX_DEPTH = 256

# host frames a single GGB call may consume, used to size the recursion limit
_HOST_FRAMES_PER_CALL = 24


# ============================================================
# Overflow policy
# ============================================================


def _wrap(raw: int, width: int) -> int:
    return raw & ((1 << width) - 1)


def _trap(raw: int, width: int) -> int:
    if raw < 0 or raw >= 1 << width:
        raise OverflowError(f"{raw} does not fit u{width}")
    return raw


OVERFLOW_WRAP = "wrap"
OVERFLOW_TRAP = "trap"

OVERFLOW_POLICIES: dict[str, Callable[[int, int], int]] = {
    OVERFLOW_WRAP: _wrap,
    OVERFLOW_TRAP: _trap,
}


@dataclass
class RuntimeConfig:
    overflow: str = OVERFLOW_WRAP
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self) -> None:
        if self.overflow not in OVERFLOW_POLICIES:
            raise ValueError(f"unknown overflow policy '{self.overflow}'")
        if self.max_depth < 1:
            raise ValueError("max_depth must be at least 1")

    @classmethod
    def from_module(cls, module: TModule) -> RuntimeConfig:
        """Defaults overridden by the module's pragmas."""
        return cls(
            overflow=OVERFLOW_TRAP if module.trap_overflow else OVERFLOW_WRAP,
            max_depth=module.max_depth if module.max_depth is not None else DEFAULT_MAX_DEPTH,
        )


# ============================================================
# Control flow signals (internal)
# ============================================================


class _Signal(Exception):
    pass


class _Return(_Signal):
    def __init__(self, value: Value | None):
        self.value = value


class _Break(_Signal):
    pass


class _Continue(_Signal):
    pass


# ============================================================
# Results
# ============================================================


@dataclass
class RunResult:
    """Final state of a completed run."""

    statics: dict[str, Value]
    environment: StaticEnvironment = field(repr=False)

    def values(self) -> dict[str, int | list[int]]:
        """The statics snapshot as plain ints and lists of ints."""
        return {name: v.to_python() for name, v in self.statics.items()}

    def image(self, size: int = 0x10000) -> bytes:
        return self.environment.image(size)


def run(module: TModule, *, config: RuntimeConfig | None = None) -> RunResult:
    """Check, build and run a parsed GGB module."""
    errors = check(module)
    if errors:
        raise errors[0]
    program = build_program(module)
    rt = Runtime(program, config if config is not None else RuntimeConfig.from_module(module))
    return rt.run_main()


# ============================================================
# Frames
# ============================================================


@dataclass(frozen=True)
class FnSig:
    params: tuple[Ty, ...]
    ret: Ty | None


@dataclass
class _Binding:
    typ: Ty
    value: Value


class Frame:
    """Activation record: lexical scopes of one call (or of the top level)."""

    def __init__(self, function: str | None, ret: Ty | None):
        self.function = function
        self.ret = ret
        self._scopes: list[dict[str, _Binding]] = []

    def push_scope(self) -> None:
        self._scopes.append({})

    def pop_scope(self) -> None:
        self._scopes.pop()

    def bind(self, name: str, typ: Ty, value: Value) -> None:
        self._scopes[-1][name] = _Binding(typ, value)

    def lookup(self, name: str) -> _Binding | None:
        for scope in reversed(self._scopes):
            if name in scope:
                return scope[name]
        return None


class _LValueRef:
    def __init__(self, typ: Ty):
        self.typ = typ

    def get(self) -> Value:  # pragma: no cover
        raise NotImplementedError

    def set(self, value: Value) -> None:  # pragma: no cover
        raise NotImplementedError


class _NamedRef(_LValueRef):
    """A local binding or a static slot."""

    def __init__(self, holder: _Binding | StaticSlot):
        super().__init__(holder.typ)
        self._holder = holder

    def get(self) -> Value:
        return self._holder.value

    def set(self, value: Value) -> None:
        self._holder.value = value


class _CellRef(_LValueRef):
    def __init__(self, array: Array, index: int):
        super().__init__(UintT(array.element_width))
        self._array = array
        self._index = index

    def get(self) -> Value:
        return self._array.get(self._index)

    def set(self, value: Value) -> None:
        assert isinstance(value, Scalar)
        self._array.set(self._index, value)


@contextmanager
def _raised_recursion_limit(max_depth: int) -> Iterator[None]:
    old = sys.getrecursionlimit()
    needed = old + max_depth * _HOST_FRAMES_PER_CALL
    sys.setrecursionlimit(needed)
    try:
        yield
    finally:
        sys.setrecursionlimit(old)


# ============================================================
# Evaluator
# ============================================================


class Runtime:
    def __init__(self, program: Program, config: RuntimeConfig):
        self.program = program
        self.config = config
        self._reduce = OVERFLOW_POLICIES[config.overflow]
        self.frames: list[Frame] = []
        self._sigs: dict[str, FnSig] = {}
        for name in program.functions.names():
            decl = program.functions.get(name)
            assert decl is not None
            self._sigs[name] = FnSig(
                tuple(resolve_type(p.typ) for p in decl.params),
                resolve_type(decl.ret) if decl.ret is not None else None,
            )

    # ---- Running -----------------------------------------------------------

    def run_main(self) -> RunResult:
        statics = self.program.statics
        logger.debug(
            "running %d top-level statements, %d functions, %d static slots (%s, max depth %d)",
            len(self.program.statements),
            len(self.program.functions),
            len(statics.slots()),
            self.config.overflow,
            self.config.max_depth,
        )
        main = Frame(None, None)
        self.frames.append(main)
        try:
            with _raised_recursion_limit(self.config.max_depth):
                self._exec_block(self.program.statements, main)
        except RecursionError:
            raise RuntimeFault(
                "stack exhausted: host recursion limit reached below max depth "
                + str(self.config.max_depth)
            ) from None
        except ExplicitPanic as e:
            logger.debug("panicked: %s (trace %s)", e, " > ".join(e.trace))
            raise
        finally:
            self.frames.clear()
        logger.debug("completed")
        return RunResult(statics.snapshot(), statics)

    # ---- Functions ---------------------------------------------------------

    def _call_fn(self, decl: TFnDecl, args: list[Value], *, pos: Pos) -> Value | None:
        depth = len(self.frames) - 1
        if depth >= self.config.max_depth:
            raise RuntimeFault(
                "stack exhausted: call depth exceeds " + str(self.config.max_depth), pos
            )
        sig = self._sigs[decl.name]
        frame = Frame(decl.name, sig.ret)
        frame.push_scope()
        for p, typ, value in zip(decl.params, sig.params, args):
            frame.bind(p.name, typ, value)
        self.frames.append(frame)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("call %s%s at depth %d", decl.name, [str(a) for a in args], depth + 1)
        try:
            self._exec_block(decl.body, frame, new_scope=False)
            if sig.ret is not None:
                raise RuntimeFault(
                    "function '" + decl.name + "' ended without returning " + sig.ret.display(),
                    decl.pos,
                )
            return None
        except _Return as r:
            return r.value
        except _TracedError as e:
            e.trace.insert(0, decl.name)
            raise
        finally:
            self.frames.pop()

    def _eval_call(self, call: TCall, frame: Frame) -> Value | None:
        decl = self.program.functions.get(call.func)
        if decl is None:
            raise DeclarationError("undefined function '" + call.func + "'", call.pos)
        sig = self._sigs[decl.name]
        if len(call.args) != len(sig.params):
            raise RuntimeFault(
                "'"
                + call.func
                + "' expects "
                + str(len(sig.params))
                + " argument(s), got "
                + str(len(call.args)),
                call.pos,
            )
        args = [self._eval_typed(a, frame, t) for a, t in zip(call.args, sig.params)]
        return self._call_fn(decl, args, pos=call.pos)

    # ---- Statements --------------------------------------------------------

    def _exec_block(self, stmts: list[TStmt], frame: Frame, *, new_scope: bool = True) -> None:
        if not new_scope:
            for st in stmts:
                self._exec_stmt(st, frame)
            return
        frame.push_scope()
        try:
            for st in stmts:
                self._exec_stmt(st, frame)
        finally:
            frame.pop_scope()

    def _exec_stmt(self, st: TStmt, frame: Frame) -> None:
        if isinstance(st, TAssignStmt):
            self._exec_assign(st, frame)
            return

        if isinstance(st, TExprStmt):
            if isinstance(st.expr, TCall):
                self._eval_call(st.expr, frame)
            else:
                self._eval_expr(st.expr, frame)
            return

        if isinstance(st, TLetStmt):
            typ = resolve_type(st.typ)
            frame.bind(st.name, typ, self._eval_typed(st.value, frame, typ))
            return

        if isinstance(st, TIfStmt):
            cond = self._eval_scalar(st.cond, frame, None)
            if cond.value != 0:
                self._exec_block(st.then_body, frame)
            elif st.else_body is not None:
                self._exec_block(st.else_body, frame)
            return

        if isinstance(st, TReturnStmt):
            self._exec_return(st, frame)

        if isinstance(st, TForStmt):
            self._exec_for(st, frame)
            return

        if isinstance(st, TLoopStmt):
            while True:
                try:
                    self._exec_block(st.body, frame)
                except _Continue:
                    continue
                except _Break:
                    return

        if isinstance(st, TBreakStmt):
            raise _Break()
        if isinstance(st, TContinueStmt):
            raise _Continue()

        if isinstance(st, TPanicStmt):
            where = frame.function if frame.function is not None else "top level"
            raise ExplicitPanic("explicit panic in " + where, st.pos)

        if isinstance(st, TStaticDecl):
            # allocated when the program was built
            return

        raise RuntimeFault("unsupported statement", st.pos)

    def _exec_return(self, st: TReturnStmt, frame: Frame) -> None:
        if frame.function is None:
            raise RuntimeFault("'return' outside of a function", st.pos)
        if frame.ret is None:
            if st.value is not None:
                raise RuntimeFault(
                    "'" + frame.function + "' has no return type but returns a value",
                    st.pos,
                )
            raise _Return(None)
        if st.value is None:
            raise RuntimeFault(
                "'" + frame.function + "' must return " + frame.ret.display(), st.pos
            )
        raise _Return(self._eval_typed(st.value, frame, frame.ret))

    def _exec_for(self, st: TForStmt, frame: Frame) -> None:
        typ = resolve_type(st.typ)
        if not isinstance(typ, UintT):
            raise RuntimeFault("loop variable '" + st.name + "' must be a scalar", st.pos)
        start = self._eval_typed(st.start, frame, typ)
        end = self._eval_typed(st.end, frame, typ)
        assert isinstance(start, Scalar) and isinstance(end, Scalar)
        # start >= end runs zero iterations
        for i in range(start.value, end.value):
            frame.push_scope()
            frame.bind(st.name, typ, Scalar(typ.width, i))
            try:
                self._exec_block(st.body, frame)
            except _Continue:
                continue
            except _Break:
                break
            finally:
                frame.pop_scope()

    def _exec_assign(self, st: TAssignStmt, frame: Frame) -> None:
        ref = self._lvalue(st.target, frame)
        if st.op == "=":
            ref.set(self._eval_typed(st.value, frame, ref.typ))
            return
        if not isinstance(ref.typ, UintT):
            raise RuntimeFault(
                "'" + st.op + "' needs a scalar target, got " + ref.typ.display(), st.pos
            )
        current = ref.get()
        rhs = self._eval_typed(st.value, frame, ref.typ)
        assert isinstance(current, Scalar) and isinstance(rhs, Scalar)
        ref.set(self._arith(st.op[0], current, rhs, st.pos))

    # ---- Names -------------------------------------------------------------

    def _resolve(self, name: str, frame: Frame, pos: Pos) -> _Binding | StaticSlot | ConstArray:
        binding = frame.lookup(name)
        if binding is not None:
            return binding
        entry = self.program.statics.resolve(name, frame.function)
        if entry is None:
            raise DeclarationError("undefined name '" + name + "'", pos)
        return entry

    def _lvalue(self, target: TVar | TIndex, frame: Frame) -> _LValueRef:
        entry = self._resolve(target.name, frame, target.pos)
        if isinstance(entry, ConstArray):
            raise DeclarationError("cannot assign to const '" + target.name + "'", target.pos)
        if isinstance(target, TVar):
            return _NamedRef(entry)
        array = entry.value
        if not isinstance(array, Array):
            raise RuntimeFault("'" + target.name + "' is not an array", target.pos)
        return _CellRef(array, self._eval_index(array, target, frame))

    def _eval_index(self, array: Array, expr: TIndex, frame: Frame) -> int:
        if isinstance(expr.index, TIntLit):
            index = expr.index.value
        else:
            # all-literal arithmetic must be able to reach the last cell
            width = max(DEFAULT_WIDTH, (len(array) - 1).bit_length())
            index = self._eval_scalar(expr.index, frame, width).value
        if index >= len(array):
            raise RuntimeFault(
                "index "
                + str(index)
                + " out of bounds for '"
                + expr.name
                + "' of length "
                + str(len(array)),
                expr.pos,
            )
        return index

    # ---- Expressions -------------------------------------------------------

    def _eval_expr(self, expr: TExpr, frame: Frame, expected: int | None = None) -> Value:
        """Evaluate expr. expected is the width an untyped literal should take."""
        if isinstance(expr, TIntLit):
            width = expected if expected is not None else DEFAULT_WIDTH
            if expr.value >= 1 << width:
                raise RuntimeFault(
                    "literal " + expr.raw + " does not fit u" + str(width), expr.pos
                )
            return Scalar(width, expr.value)

        if isinstance(expr, TVar):
            return self._resolve(expr.name, frame, expr.pos).value

        if isinstance(expr, TIndex):
            array = self._resolve(expr.name, frame, expr.pos).value
            if not isinstance(array, Array):
                raise RuntimeFault("'" + expr.name + "' is not an array", expr.pos)
            return array.get(self._eval_index(array, expr, frame))

        if isinstance(expr, TBinaryOp):
            return self._eval_binary(expr, frame, expected)

        if isinstance(expr, TCall):
            result = self._eval_call(expr, frame)
            if result is None:
                raise RuntimeFault(
                    "'" + expr.func + "' has no return type; its result cannot be used",
                    expr.pos,
                )
            return result

        raise RuntimeFault("unsupported expression", expr.pos)

    def _eval_scalar(self, expr: TExpr, frame: Frame, expected: int | None) -> Scalar:
        v = self._eval_expr(expr, frame, expected)
        if not isinstance(v, Scalar):
            raise RuntimeFault("expected a scalar, got " + v.ty().display(), expr.pos)
        return v

    def _eval_typed(self, expr: TExpr, frame: Frame, typ: Ty) -> Value:
        """Evaluate expr for storage in a slot of type typ; arrays are copied."""
        expected = typ.width if isinstance(typ, UintT) else None
        v = self._eval_expr(expr, frame, expected)
        if v.ty() != typ:
            raise RuntimeFault(
                "type mismatch: expected " + typ.display() + ", got " + v.ty().display(),
                expr.pos,
            )
        return v.copy()

    def _width_hint(self, expr: TExpr, frame: Frame) -> int | None:
        """Width of expr if known without evaluating it; None for literals."""
        if isinstance(expr, TIntLit):
            return None
        if isinstance(expr, TVar):
            binding = frame.lookup(expr.name)
            entry = binding if binding is not None else self.program.statics.resolve(
                expr.name, frame.function
            )
            if entry is not None and isinstance(entry.value, Scalar):
                return entry.value.width
            return None
        if isinstance(expr, TIndex):
            binding = frame.lookup(expr.name)
            entry = binding if binding is not None else self.program.statics.resolve(
                expr.name, frame.function
            )
            if entry is not None and isinstance(entry.value, Array):
                return entry.value.element_width
            return None
        if isinstance(expr, TCall):
            sig = self._sigs.get(expr.func)
            if sig is not None and isinstance(sig.ret, UintT):
                return sig.ret.width
            return None
        if isinstance(expr, TBinaryOp):
            if expr.op in COMPARE_OPS or expr.op in LOGIC_OPS:
                return 1
            left = self._width_hint(expr.left, frame)
            return left if left is not None else self._width_hint(expr.right, frame)
        return None

    def _eval_binary(self, expr: TBinaryOp, frame: Frame, expected: int | None) -> Scalar:
        op = expr.op
        if op in LOGIC_OPS:
            # both sides always evaluated, left first
            left = self._eval_scalar(expr.left, frame, None)
            right = self._eval_scalar(expr.right, frame, None)
            if op == "&":
                return Scalar(1, int(left.value != 0 and right.value != 0))
            return Scalar(1, int(left.value != 0 or right.value != 0))

        width = self._width_hint(expr.left, frame)
        if width is None:
            width = self._width_hint(expr.right, frame)
        if width is None:
            width = expected if op in ARITH_OPS and expected is not None else DEFAULT_WIDTH
        left = self._eval_scalar(expr.left, frame, width)
        right = self._eval_scalar(expr.right, frame, width)
        if left.width != right.width:
            raise RuntimeFault(
                "operand width mismatch in ("
                + op
                + " ...): u"
                + str(left.width)
                + " vs u"
                + str(right.width),
                expr.pos,
            )

        if op in COMPARE_OPS:
            a = left.value
            b = right.value
            if op == "==":
                res = a == b
            elif op == "!=":
                res = a != b
            elif op == "<":
                res = a < b
            elif op == "<=":
                res = a <= b
            elif op == ">":
                res = a > b
            else:
                res = a >= b
            return Scalar(1, int(res))

        return self._arith(op, left, right, expr.pos)

    def _arith(self, op: str, left: Scalar, right: Scalar, pos: Pos) -> Scalar:
        width = left.width
        a = left.value
        b = right.value
        if op == "+":
            raw = a + b
        elif op == "-":
            raw = a - b
        elif op == "*":
            raw = a * b
        elif op == "/" or op == "%":
            if b == 0:
                raise RuntimeFault("division by zero", pos)
            raw = a // b if op == "/" else a % b
        elif op == "^":
            raw = a ^ b
        elif op == "<<":
            # shifting every bit out: 0 when wrapping, overflow when trapping
            raw = a << b if b < width else (0 if a == 0 else 1 << width)
        elif op == ">>":
            raw = a >> b
        else:
            raise RuntimeFault("unknown operator '" + op + "'", pos)
        try:
            return Scalar(width, self._reduce(raw, width))
        except OverflowError as e:
            raise RuntimeFault("arithmetic overflow: " + str(e), pos) from None
