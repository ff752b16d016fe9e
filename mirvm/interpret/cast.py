# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Casts between scalar and pointer types.

Pointer-to-integer casts keep provenance: `ptr as usize` yields a PTR
PrimVal that behaves like an integer for the few operations that can be
answered without knowing real addresses (see operator.ptr_binary_op), and
faults when its bytes are needed.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from mirvm.core.layout import Abi
from mirvm.core.types_core import TypeId, TypeKind
from mirvm.mir.mir_nodes import CastKind
from .errors import FaultKind, bug, unsupported
from .operand import OpTy
from .pointer import Pointer
from .primval import PrimVal, PrimValKind, int_kind
from .value import ByVal, ByValPair, Value

if TYPE_CHECKING:
	from .eval_context import InterpCx


def cast_value(ecx: "InterpCx", kind: CastKind, src: OpTy, dest_ty: TypeId) -> Value:
	dest_layout = ecx.layout_of(dest_ty)
	if kind is CastKind.NUMERIC:
		return ByVal(numeric_cast(ecx, ecx.read_scalar(src), dest_ty))

	if kind is CastKind.PTR_TO_PTR:
		value = ecx.read_value(src)
		if dest_layout.abi is Abi.SCALAR_PAIR:
			if not isinstance(value, ByValPair):
				bug(f"casting thin pointer {value} to fat pointer {ecx.types.display(dest_ty)}")
			return value
		if isinstance(value, ByValPair):
			return ByVal(value.a)
		return value

	if kind is CastKind.PTR_TO_ADDR:
		ptr = ecx.read_scalar(src).to_ptr()
		if ptr.has_provenance:
			if dest_layout.size != ecx.memory.pointer_size():
				unsupported(f"casting pointer {ptr} to the narrower {ecx.types.display(dest_ty)}", FaultKind.POINTER_AS_BYTES)
			return ByVal(PrimVal.from_ptr(ptr))
		return ByVal(PrimVal.from_bits(ptr.offset, int_kind(dest_layout.size, ecx.types.is_signed(dest_ty))))

	if kind is CastKind.ADDR_TO_PTR:
		prim = ecx.read_scalar(src)
		if prim.is_ptr:
			assert prim.ptr is not None
			return ByVal(PrimVal.from_ptr(prim.ptr))
		return ByVal(PrimVal.from_ptr(Pointer.from_int(prim.to_u64())))

	if kind is CastKind.FN_PTR_TO_PTR:
		return ByVal(PrimVal.from_ptr(ecx.read_scalar(src).to_ptr()))

	if kind is CastKind.REIFY_FN_POINTER:
		td = ecx.types.get(src.layout.ty)
		if td.kind is not TypeKind.FN_DEF or td.fn_name is None:
			bug(f"reifying non-fn-item type {td.name}")
		return ByVal(PrimVal.from_fn_ptr(ecx.memory.create_fn_alloc(td.fn_name)))

	if kind is CastKind.UNSIZE:
		return unsize(ecx, src, dest_ty)

	bug(f"unknown cast kind {kind}")


def numeric_cast(ecx: "InterpCx", prim: PrimVal, dest_ty: TypeId) -> PrimVal:
	td = ecx.types.get(dest_ty)
	size = ecx.layout_of(dest_ty).size
	if prim.kind.is_float:
		value = prim.to_float()
		if td.kind is TypeKind.FLOAT:
			return PrimVal.from_float(value, size)
		if td.kind in (TypeKind.INT, TypeKind.UINT):
			signed = td.kind is TypeKind.INT
			bits = size * 8
			lo, hi = (-(1 << (bits - 1)), (1 << (bits - 1)) - 1) if signed else (0, (1 << bits) - 1)
			# float -> int saturates; NaN becomes 0
			if math.isnan(value):
				result = 0
			elif math.isinf(value):
				result = hi if value > 0 else lo
			else:
				result = min(max(int(value), lo), hi)
			return PrimVal.from_bits(result, int_kind(size, signed))
		bug(f"casting {prim.kind.label} to {td.name}")
	value = prim.to_int_value()
	if td.kind in (TypeKind.INT, TypeKind.UINT):
		return PrimVal.from_bits(value, int_kind(size, td.kind is TypeKind.INT))
	if td.kind is TypeKind.FLOAT:
		return PrimVal.from_float(float(value), size)
	if td.kind is TypeKind.CHAR:
		if prim.kind is not PrimValKind.U8:
			bug(f"only u8 casts to char, got {prim.kind.label}")
		return PrimVal.from_char(value)
	bug(f"casting {prim.kind.label} to {td.name}")


def unsize(ecx: "InterpCx", src: OpTy, dest_ty: TypeId) -> Value:
	"""`&[T; N] -> &[T]` and `&T -> &dyn Trait`."""
	from .traits import get_vtable

	types = ecx.types
	src_pointee = types.pointee(src.layout.ty)
	dest_pointee = types.pointee(dest_ty)
	value = ecx.read_value(src)
	if isinstance(value, ByValPair):
		if types.is_unsized(src_pointee) and types.kind(src_pointee) is types.kind(dest_pointee):
			return value
		bug(f"unsizing already unsized {types.display(src_pointee)} to {types.display(dest_pointee)}")
	data = PrimVal.from_ptr(value.read_ptr(ecx.memory))
	dest_tail = types.get(types.unsized_tail(dest_pointee))
	if dest_tail.kind is TypeKind.SLICE:
		src_td = types.get(src_pointee)
		if src_td.kind is TypeKind.STRUCT and src_td.param_types:
			src_td = types.get(src_td.param_types[-1])
		if src_td.kind is not TypeKind.ARRAY or src_td.length is None:
			bug(f"unsizing {types.display(src_pointee)} to a slice")
		return ByValPair(data, ecx.usize(src_td.length))
	if dest_tail.kind is TypeKind.DYN:
		assert dest_tail.trait is not None
		return ByValPair(data, PrimVal.from_ptr(get_vtable(ecx, src_pointee, dest_tail.trait)))
	bug(f"unsizing to {types.display(dest_pointee)}")


__all__ = ["cast_value", "numeric_cast", "unsize"]
