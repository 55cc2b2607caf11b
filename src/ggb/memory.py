"""GGB memory model: resolved types, values, the static environment and the
function table.

Everything a run owns lives here. Static slots are allocated once when the
Program is built; function-local statics are keyed by their function's name,
not by activation, so every recursive call of a function sees the same slot.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .ast import (
    Pos,
    TArrayType,
    TConstDecl,
    TFnDecl,
    TModule,
    TStaticDecl,
    TStmt,
    TType,
    TUint,
    walk_stmts,
)
from .errors import DeclarationError


# ============================================================
# Types
# ============================================================


class Ty:
    """Base type for the runtime."""

    def display(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class UintT(Ty):
    width: int

    def display(self) -> str:
        return f"u{self.width}"


@dataclass(frozen=True)
class ArrayT(Ty):
    element: UintT
    length: int

    def display(self) -> str:
        return f"[{self.element.display()} {self.length}]"


def resolve_type(typ: TType) -> Ty:
    if isinstance(typ, TUint):
        return UintT(typ.width)
    if isinstance(typ, TArrayType):
        return ArrayT(UintT(typ.element.width), typ.length)
    raise TypeError(f"unknown type node {type(typ).__name__}")


# ============================================================
# Values
# ============================================================


class Value:
    """A runtime value with a concrete type."""

    def ty(self) -> Ty:
        raise NotImplementedError

    def copy(self) -> Value:
        raise NotImplementedError

    def to_python(self) -> int | list[int]:
        raise NotImplementedError


@dataclass(frozen=True)
class Scalar(Value):
    width: int
    value: int

    def __post_init__(self) -> None:
        if self.width < 1:
            raise ValueError("scalar width must be positive")
        object.__setattr__(self, "value", self.value & ((1 << self.width) - 1))

    def ty(self) -> Ty:
        return UintT(self.width)

    def copy(self) -> Scalar:
        return self

    def to_python(self) -> int:
        return self.value

    def __str__(self) -> str:
        return str(self.value)


@dataclass
class Array(Value):
    element_width: int
    cells: list[int]

    @classmethod
    def zeroed(cls, typ: ArrayT) -> Array:
        return cls(typ.element.width, [0] * typ.length)

    def __len__(self) -> int:
        return len(self.cells)

    def ty(self) -> Ty:
        return ArrayT(UintT(self.element_width), len(self.cells))

    def get(self, index: int) -> Scalar:
        return Scalar(self.element_width, self.cells[index])

    def set(self, index: int, value: Scalar) -> None:
        self.cells[index] = value.value

    def copy(self) -> Array:
        return Array(self.element_width, list(self.cells))

    def to_python(self) -> list[int]:
        return list(self.cells)

    def __str__(self) -> str:
        return "[" + " ".join(str(c) for c in self.cells) + "]"


def zero_value(typ: Ty) -> Value:
    if isinstance(typ, UintT):
        return Scalar(typ.width, 0)
    if isinstance(typ, ArrayT):
        return Array.zeroed(typ)
    raise TypeError(f"type '{typ.display()}' has no zero value")


# ============================================================
# Static environment
# ============================================================


@dataclass
class StaticSlot:
    """Persistent named storage. owner is None for globals."""

    name: str
    typ: Ty
    value: Value
    owner: str | None = None
    address: int | None = None

    @property
    def key(self) -> str:
        if self.owner is None:
            return self.name
        return f"{self.owner}::{self.name}"


@dataclass
class ConstArray:
    """Read-only array populated from a literal list."""

    name: str
    typ: ArrayT
    value: Array


class StaticEnvironment:
    """Global statics, consts and the per-function static registry."""

    def __init__(self) -> None:
        self._globals: dict[str, StaticSlot] = {}
        self._consts: dict[str, ConstArray] = {}
        self._locals: dict[tuple[str, str], StaticSlot] = {}
        # declaration order, for snapshots and memory images
        self._order: list[StaticSlot] = []

    def declare_global(
        self, name: str, typ: Ty, *, address: int | None = None, pos: Pos | None = None
    ) -> StaticSlot:
        if name in self._globals or name in self._consts:
            raise DeclarationError(f"'{name}' already declared at top level", pos)
        slot = StaticSlot(name, typ, zero_value(typ), None, address)
        self._globals[name] = slot
        self._order.append(slot)
        return slot

    def declare_local(
        self,
        owner: str,
        name: str,
        typ: Ty,
        *,
        address: int | None = None,
        pos: Pos | None = None,
    ) -> StaticSlot:
        if (owner, name) in self._locals:
            raise DeclarationError(f"static '{name}' already declared in '{owner}'", pos)
        slot = StaticSlot(name, typ, zero_value(typ), owner, address)
        self._locals[(owner, name)] = slot
        self._order.append(slot)
        return slot

    def declare_const(
        self, name: str, typ: ArrayT, cells: list[int], *, pos: Pos | None = None
    ) -> ConstArray:
        if name in self._globals or name in self._consts:
            raise DeclarationError(f"'{name}' already declared at top level", pos)
        const = ConstArray(name, typ, Array(typ.element.width, list(cells)))
        self._consts[name] = const
        return const

    def resolve(self, name: str, owner: str | None) -> StaticSlot | ConstArray | None:
        """Function statics shadow globals, which shadow consts."""
        if owner is not None:
            slot = self._locals.get((owner, name))
            if slot is not None:
                return slot
        slot = self._globals.get(name)
        if slot is not None:
            return slot
        return self._consts.get(name)

    def slots(self) -> list[StaticSlot]:
        return list(self._order)

    def snapshot(self) -> dict[str, Value]:
        """Copy of every static slot; function statics appear as 'fn::NAME'."""
        return {slot.key: slot.value.copy() for slot in self._order}

    def image(self, size: int = 0x10000) -> bytes:
        """Byte image of every slot placed with static@ADDR.

        Cells are little-endian, ceil(width / 8) bytes each. Overlapping
        slots alias; later declarations win.
        """
        out = bytearray(size)
        for slot in self._order:
            if slot.address is None:
                continue
            if isinstance(slot.value, Scalar):
                cells = [slot.value.value]
                width = slot.value.width
            else:
                cells = slot.value.cells
                width = slot.value.element_width
            nbytes = (width + 7) // 8
            offset = slot.address
            for cell in cells:
                for b in cell.to_bytes(nbytes, "little"):
                    if 0 <= offset < size:
                        out[offset] = b
                    offset += 1
        return bytes(out)


# ============================================================
# Function table + program
# ============================================================


class FunctionTable:
    """Function name -> definition. Built once, before anything runs."""

    def __init__(self) -> None:
        self._fns: dict[str, TFnDecl] = {}

    def register(self, decl: TFnDecl) -> None:
        if decl.name in self._fns:
            raise DeclarationError(f"function '{decl.name}' already declared", decl.pos)
        self._fns[decl.name] = decl

    def get(self, name: str) -> TFnDecl | None:
        return self._fns.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._fns

    def __len__(self) -> int:
        return len(self._fns)

    def names(self) -> list[str]:
        return list(self._fns)


@dataclass
class Program:
    """One run's worth of state: functions, statics, top-level statements."""

    functions: FunctionTable
    statics: StaticEnvironment
    statements: list[TStmt] = field(default_factory=list)


def build_program(module: TModule) -> Program:
    """Register every function, static and const of module.

    Function-local statics are allocated here, together with their function,
    so they exist before the first call reaches them.
    """
    functions = FunctionTable()
    statics = StaticEnvironment()
    statements: list[TStmt] = []
    for item in module.items:
        if isinstance(item, TFnDecl):
            functions.register(item)
            for st in walk_stmts(item.body):
                if isinstance(st, TStaticDecl):
                    statics.declare_local(
                        item.name,
                        st.name,
                        resolve_type(st.typ),
                        address=st.address,
                        pos=st.pos,
                    )
        elif isinstance(item, TConstDecl):
            typ = resolve_type(item.typ)
            assert isinstance(typ, ArrayT)
            statics.declare_const(
                item.name, typ, [v.value for v in item.values], pos=item.pos
            )
        else:
            statements.append(item)
            # top-level statics, including ones nested in top-level blocks
            for st in walk_stmts([item]):
                if isinstance(st, TStaticDecl):
                    statics.declare_global(
                        st.name, resolve_type(st.typ), address=st.address, pos=st.pos
                    )
    return Program(functions, statics, statements)
