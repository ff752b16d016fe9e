# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Intrinsic functions.

Intrinsics are calls to functions without a MIR body whose name is in the
catalog below. They run in place (no frame is pushed): each handler reads
its arguments, performs the operation on Memory or on PrimVals, and writes
the result into the call's destination. Type arguments (`size_of::<T>`)
come from the generics of the callee's fn item type.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Tuple

from mirvm.core.layout import Abi, Layout
from mirvm.core.types_core import TypeId, TypeKind, TypeTable
from mirvm.mir.mir_nodes import BinOp
from .errors import FaultKind, InterpError, bug, ub, unsupported
from .memory import MemoryKind
from .operand import OpTy
from .operator import binary_op
from .place import PlaceTy
from .pointer import Pointer
from .primval import PrimVal, int_kind, truncate
from .value import ByVal, ByValPair, Value

if TYPE_CHECKING:
	from .eval_context import InterpCx


Handler = Callable[["InterpCx", str, Tuple[TypeId, ...], List[OpTy], Optional[PlaceTy]], None]

_INTRINSICS: Dict[str, Handler] = {}


def _intrinsic(*names: str) -> Callable[[Handler], Handler]:
	def register(fn: Handler) -> Handler:
		for name in names:
			_INTRINSICS[name] = fn
		return fn

	return register


def is_intrinsic(name: str) -> bool:
	return name in _INTRINSICS


def intrinsic_names() -> List[str]:
	return sorted(_INTRINSICS)


def call_intrinsic(
	ecx: "InterpCx",
	name: str,
	generics: Tuple[TypeId, ...],
	args: List[OpTy],
	dest: Optional[PlaceTy],
) -> None:
	handler = _INTRINSICS.get(name)
	if handler is None:
		bug(f"unknown intrinsic {name!r}")
	handler(ecx, name, generics, args, dest)


# Helpers

def _generic(generics: Sequence[TypeId], index: int = 0) -> TypeId:
	if index >= len(generics):
		bug(f"intrinsic needs type argument #{index}, got {len(generics)}")
	return generics[index]


def _arity(args: Sequence[OpTy], n: int) -> None:
	if len(args) != n:
		bug(f"intrinsic takes {n} arguments, got {len(args)}")


def _dest(dest: Optional[PlaceTy]) -> PlaceTy:
	if dest is None:
		bug("intrinsic result written to no destination")
	return dest


def _write(ecx: "InterpCx", dest: Optional[PlaceTy], value: Value) -> None:
	ecx.write_value(value, _dest(dest))


def _ptr(ecx: "InterpCx", op: OpTy) -> Pointer:
	return ecx.read_scalar(op).to_ptr()


def _sized(ecx: "InterpCx", ty: TypeId) -> Layout:
	layout = ecx.layout_of(ty)
	if layout.unsized:
		bug(f"intrinsic type argument {ecx.types.display(ty)} is unsized")
	return layout


def _needs_drop(types: TypeTable, ty: TypeId, seen: Optional[set] = None) -> bool:
	seen = set() if seen is None else seen
	if ty in seen:
		return False
	seen.add(ty)
	td = types.get(ty)
	if td.drop_fn is not None or td.kind is TypeKind.DYN:
		return True
	if td.kind in (TypeKind.STRUCT, TypeKind.TUPLE, TypeKind.ARRAY, TypeKind.SLICE):
		return any(_needs_drop(types, t, seen) for t in td.param_types)
	if td.kind is TypeKind.ENUM:
		return any(_needs_drop(types, t, seen) for v in td.variants for t in v.field_types)
	return False


# Layout queries

@_intrinsic("size_of")
def _size_of(ecx, name, generics, args, dest):
	_write(ecx, dest, ByVal(ecx.usize(_sized(ecx, _generic(generics)).size)))


@_intrinsic("min_align_of")
def _min_align_of(ecx, name, generics, args, dest):
	_write(ecx, dest, ByVal(ecx.usize(_sized(ecx, _generic(generics)).align)))


@_intrinsic("size_of_val", "min_align_of_val")
def _size_of_val(ecx, name, generics, args, dest):
	_arity(args, 1)
	place = ecx.ref_to_place(ecx.read_value(args[0]), _generic(generics))
	meta = place.place.meta if not place.is_local else None
	size, align = ecx.size_and_align_of(place.layout, meta)
	_write(ecx, dest, ByVal(ecx.usize(size if name == "size_of_val" else align)))


@_intrinsic("needs_drop")
def _needs_drop_intrinsic(ecx, name, generics, args, dest):
	_write(ecx, dest, ByVal(PrimVal.from_bool(_needs_drop(ecx.types, _generic(generics)))))


@_intrinsic("discriminant_value")
def _discriminant_value(ecx, name, generics, args, dest):
	_arity(args, 1)
	place = ecx.ref_to_place(ecx.read_value(args[0]), _generic(generics))
	discr, _ = ecx.read_discriminant(ecx.place_to_op(place))
	scalar = _dest(dest).layout.scalar
	_write(ecx, dest, ByVal(PrimVal.from_bits(discr, int_kind(scalar.size, scalar.signed))))


# Memory

@_intrinsic("transmute")
def _transmute(ecx, name, generics, args, dest):
	"""Reinterpret the bytes of a value as another type of the same size."""
	from .validity import validate_operand

	_arity(args, 1)
	src = args[0]
	dest = _dest(dest)
	if src.layout.size != dest.layout.size:
		ub(
			FaultKind.TRANSMUTE_SIZE,
			f"transmuting {ecx.types.display(src.layout.ty)} ({src.layout.size} bytes) "
			f"to {ecx.types.display(dest.layout.ty)} ({dest.layout.size} bytes)",
		)
	mp = ecx.force_mplace(dest)
	ecx.write_value_to_ptr(ecx.read_value(src), mp.ptr, src.layout)
	if ecx.config.validate:
		validate_operand(ecx, OpTy.indirect(mp, dest.layout), const_mode=ecx.machine.const_mode)


@_intrinsic("copy", "copy_nonoverlapping")
def _copy(ecx, name, generics, args, dest):
	_arity(args, 3)
	layout = _sized(ecx, _generic(generics))
	src = _ptr(ecx, args[0])
	dst = _ptr(ecx, args[1])
	count = ecx.read_scalar(args[2]).to_u64()
	ecx.memory.copy(
		src,
		dst,
		count * layout.size,
		src_align=layout.align,
		dest_align=layout.align,
		nonoverlapping=name == "copy_nonoverlapping",
	)


@_intrinsic("write_bytes")
def _write_bytes(ecx, name, generics, args, dest):
	_arity(args, 3)
	layout = _sized(ecx, _generic(generics))
	dst = _ptr(ecx, args[0])
	byte = ecx.read_scalar(args[1]).to_u64()
	count = ecx.read_scalar(args[2]).to_u64()
	size = count * layout.size
	ecx.memory.check_ptr_access(dst, size, layout.align)
	ecx.memory.write_repeat(dst, byte, size)


@_intrinsic("offset", "arith_offset")
def _offset(ecx, name, generics, args, dest):
	_arity(args, 2)
	layout = _sized(ecx, ecx.types.pointee(args[0].layout.ty))
	prim = ecx.read_scalar(args[0])
	delta = ecx.read_scalar(args[1]).to_int_value() * layout.size
	if name == "offset":
		ptr = ecx.ptr_offset_inbounds(prim.to_ptr(), delta)
	else:
		ptr = ecx.ptr_wrapping_offset(prim.to_ptr(), delta)
	_write(ecx, dest, ByVal(PrimVal.from_ptr(ptr)))


@_intrinsic("forget")
def _forget(ecx, name, generics, args, dest):
	_arity(args, 1)


@_intrinsic("uninit")
def _uninit(ecx, name, generics, args, dest):
	dest = _dest(dest)
	layout = dest.layout
	if layout.abi is Abi.SCALAR:
		ecx.write_value(ByVal(PrimVal.undef()), dest)
	elif layout.abi is Abi.SCALAR_PAIR:
		ecx.write_value(ByValPair(PrimVal.undef(), PrimVal.undef()), dest)
	elif not layout.is_zst:
		mp = ecx.force_mplace(dest)
		ecx.memory.mark_definedness(mp.ptr, layout.size, False)


@_intrinsic("init", "zeroed")
def _zeroed(ecx, name, generics, args, dest):
	dest = _dest(dest)
	if dest.layout.is_zst:
		return
	mp = ecx.force_mplace(dest)
	ecx.memory.write_repeat(mp.ptr, 0, dest.layout.size)


@_intrinsic("volatile_load", "atomic_load")
def _load(ecx, name, generics, args, dest):
	_arity(args, 1)
	layout = _sized(ecx, _generic(generics))
	_write(ecx, dest, ecx.read_value_at(_ptr(ecx, args[0]), layout))


@_intrinsic("volatile_store", "atomic_store")
def _store(ecx, name, generics, args, dest):
	_arity(args, 2)
	layout = _sized(ecx, _generic(generics))
	ecx.write_value_to_ptr(ecx.read_value(args[1]), _ptr(ecx, args[0]), layout)


@_intrinsic("atomic_fence")
def _fence(ecx, name, generics, args, dest):
	pass


def _read_atomic(ecx: "InterpCx", generics, args) -> Tuple[Pointer, Layout, PrimVal]:
	layout = _sized(ecx, _generic(generics))
	if layout.abi is not Abi.SCALAR:
		bug(f"atomic operation on non-scalar {ecx.types.display(layout.ty)}")
	ptr = _ptr(ecx, args[0])
	value = ecx.read_value_at(ptr, layout)
	assert isinstance(value, ByVal)
	return ptr, layout, value.prim


@_intrinsic("atomic_xchg")
def _atomic_xchg(ecx, name, generics, args, dest):
	_arity(args, 2)
	ptr, layout, old = _read_atomic(ecx, generics, args)
	ecx.write_value_to_ptr(ecx.read_value(args[1]), ptr, layout)
	_write(ecx, dest, ByVal(old))


@_intrinsic("atomic_xadd", "atomic_xsub")
def _atomic_rmw(ecx, name, generics, args, dest):
	_arity(args, 2)
	ptr, layout, old = _read_atomic(ecx, generics, args)
	op = BinOp.ADD if name == "atomic_xadd" else BinOp.SUB
	new, _ = binary_op(ecx, op, OpTy.immediate(ByVal(old), layout), args[1])
	ecx.write_value_to_ptr(ByVal(new), ptr, layout)
	_write(ecx, dest, ByVal(old))


def _same_scalar(a: PrimVal, b: PrimVal) -> bool:
	if a.is_ptr or b.is_ptr:
		return a.to_ptr() == b.to_ptr()
	return a.to_bits() == b.to_bits()


@_intrinsic("atomic_cxchg")
def _atomic_cxchg(ecx, name, generics, args, dest):
	"""Compare-exchange; yields `(previous value, whether it was replaced)`."""
	_arity(args, 3)
	ptr, layout, old = _read_atomic(ecx, generics, args)
	expected = ecx.read_scalar(args[1])
	swapped = _same_scalar(old, expected)
	if swapped:
		ecx.write_value_to_ptr(ecx.read_value(args[2]), ptr, layout)
	_write(ecx, dest, ByValPair(old, PrimVal.from_bool(swapped)))


# Arithmetic

_OVERFLOW_OPS = {
	"add_with_overflow": BinOp.ADD,
	"sub_with_overflow": BinOp.SUB,
	"mul_with_overflow": BinOp.MUL,
}

_WRAPPING_OPS = {
	"wrapping_add": BinOp.ADD,
	"wrapping_sub": BinOp.SUB,
	"wrapping_mul": BinOp.MUL,
	"unchecked_div": BinOp.DIV,
	"unchecked_rem": BinOp.REM,
}


@_intrinsic(*_OVERFLOW_OPS)
def _with_overflow(ecx, name, generics, args, dest):
	_arity(args, 2)
	result, overflowed = binary_op(ecx, _OVERFLOW_OPS[name], args[0], args[1])
	_write(ecx, dest, ByValPair(result, PrimVal.from_bool(overflowed)))


@_intrinsic(*_WRAPPING_OPS)
def _wrapping(ecx, name, generics, args, dest):
	_arity(args, 2)
	result, _ = binary_op(ecx, _WRAPPING_OPS[name], args[0], args[1])
	_write(ecx, dest, ByVal(result))


@_intrinsic("unchecked_shl", "unchecked_shr")
def _unchecked_shift(ecx, name, generics, args, dest):
	_arity(args, 2)
	op = BinOp.SHL if name == "unchecked_shl" else BinOp.SHR
	result, overflowed = binary_op(ecx, op, args[0], args[1])
	if overflowed:
		amount = ecx.read_scalar(args[1]).to_int_value()
		ub(FaultKind.INVALID_SHIFT, f"{name} by {amount} overflows {ecx.types.display(args[0].layout.ty)}")
	_write(ecx, dest, ByVal(result))


@_intrinsic("exact_div")
def _exact_div(ecx, name, generics, args, dest):
	_arity(args, 2)
	rem, _ = binary_op(ecx, BinOp.REM, args[0], args[1])
	if rem.to_bits() != 0:
		a = ecx.read_scalar(args[0]).to_int_value()
		b = ecx.read_scalar(args[1]).to_int_value()
		ub(FaultKind.INEXACT_DIVISION, f"exact_div: {a} cannot be divided by {b} without remainder")
	result, _ = binary_op(ecx, BinOp.DIV, args[0], args[1])
	_write(ecx, dest, ByVal(result))


def _int_arg(ecx: "InterpCx", name: str, op: OpTy) -> PrimVal:
	prim = ecx.read_scalar(op)
	if not prim.kind.is_int:
		bug(f"{name} on {prim.kind.label}")
	return prim


@_intrinsic("ctpop", "ctlz", "cttz", "bswap")
def _bit_op(ecx, name, generics, args, dest):
	_arity(args, 1)
	prim = _int_arg(ecx, name, args[0])
	size = prim.kind.size
	bits = size * 8
	value = prim.to_bits()
	if name == "ctpop":
		result = bin(value).count("1")
	elif name == "ctlz":
		result = bits - value.bit_length()
	elif name == "cttz":
		result = bits if value == 0 else (value & -value).bit_length() - 1
	else:
		result = int.from_bytes(value.to_bytes(size, "little"), "big")
	_write(ecx, dest, ByVal(PrimVal(prim.kind, result)))


@_intrinsic("rotate_left", "rotate_right")
def _rotate(ecx, name, generics, args, dest):
	_arity(args, 2)
	prim = _int_arg(ecx, name, args[0])
	bits = prim.kind.size * 8
	value = prim.to_bits()
	amount = ecx.read_scalar(args[1]).to_u64() % bits
	if name == "rotate_right":
		amount = (bits - amount) % bits
	result = truncate((value << amount) | (value >> (bits - amount)), prim.kind.size)
	_write(ecx, dest, ByVal(PrimVal(prim.kind, result)))


def _floor(x: float) -> float:
	return x if math.isinf(x) or math.isnan(x) else float(math.floor(x))


def _ceil(x: float) -> float:
	return x if math.isinf(x) or math.isnan(x) else float(math.ceil(x))


def _sqrt(x: float) -> float:
	if math.isnan(x) or x < 0:
		return math.nan
	return math.sqrt(x)


_FLOAT_OPS = {
	"sqrt": _sqrt,
	"fabs": math.fabs,
	"floor": _floor,
	"ceil": _ceil,
}


@_intrinsic(*(f"{op}f{bits}" for op in _FLOAT_OPS for bits in (32, 64)))
def _float_op(ecx, name, generics, args, dest):
	_arity(args, 1)
	prim = ecx.read_scalar(args[0])
	size = int(name[-2:]) // 8
	if not prim.kind.is_float or prim.kind.size != size:
		bug(f"{name} on {prim.kind.label}")
	result = _FLOAT_OPS[name[:-3]](prim.to_float())
	_write(ecx, dest, ByVal(PrimVal.from_float(result, size)))


# Control flow hints

@_intrinsic("assume")
def _assume(ecx, name, generics, args, dest):
	_arity(args, 1)
	if not ecx.read_scalar(args[0]).to_bool():
		ub(FaultKind.UNREACHABLE, "`assume` called with false")


@_intrinsic("likely", "unlikely")
def _likely(ecx, name, generics, args, dest):
	_arity(args, 1)
	_write(ecx, dest, ByVal(PrimVal.from_bool(ecx.read_scalar(args[0]).to_bool())))


@_intrinsic("abort")
def _abort(ecx, name, generics, args, dest):
	raise InterpError(FaultKind.ABORTED, "the program aborted")


# Heap and output (machine policy)

def _require_heap(ecx: "InterpCx", name: str) -> None:
	if not ecx.machine.heap_allowed:
		unsupported(f"{name}: heap allocation is not available to the {ecx.machine.name} machine")


@_intrinsic("heap_alloc")
def _heap_alloc(ecx, name, generics, args, dest):
	_arity(args, 2)
	_require_heap(ecx, name)
	size = ecx.read_scalar(args[0]).to_u64()
	align = ecx.read_scalar(args[1]).to_u64()
	ptr = ecx.memory.allocate(size, align, MemoryKind.HEAP)
	_write(ecx, dest, ByVal(PrimVal.from_ptr(ptr)))


@_intrinsic("heap_dealloc")
def _heap_dealloc(ecx, name, generics, args, dest):
	_arity(args, 3)
	_require_heap(ecx, name)
	ptr = _ptr(ecx, args[0])
	size = ecx.read_scalar(args[1]).to_u64()
	align = ecx.read_scalar(args[2]).to_u64()
	ecx.memory.deallocate(ptr, MemoryKind.HEAP, size, align)


@_intrinsic("heap_realloc")
def _heap_realloc(ecx, name, generics, args, dest):
	_arity(args, 4)
	_require_heap(ecx, name)
	ptr = _ptr(ecx, args[0])
	old_size = ecx.read_scalar(args[1]).to_u64()
	align = ecx.read_scalar(args[2]).to_u64()
	new_size = ecx.read_scalar(args[3]).to_u64()
	new_ptr = ecx.memory.reallocate(ptr, old_size, align, new_size, align, MemoryKind.HEAP)
	_write(ecx, dest, ByVal(PrimVal.from_ptr(new_ptr)))


@_intrinsic("write_output")
def _write_output(ecx, name, generics, args, dest):
	_arity(args, 2)
	ptr = _ptr(ecx, args[0])
	length = ecx.read_scalar(args[1]).to_u64()
	data = ecx.memory.read_bytes(ptr, length)
	ecx.machine.write_output(ecx, data)


__all__ = ["is_intrinsic", "intrinsic_names", "call_intrinsic"]
