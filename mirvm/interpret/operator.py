# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Binary and unary operators on PrimVals.

`binary_op` always returns `(result, overflowed)`. For arithmetic the
result is the wrapped value; for shifts it is the value shifted by the
amount masked to the bit width, and `overflowed` reports an out-of-range
amount. BinaryOp uses the wrapped result (and faults on bad shifts),
CheckedBinaryOp stores the pair.

Division and remainder by zero, and `MIN / -1`, fault for every flavour.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Tuple

from mirvm.mir.mir_nodes import BinOp, UnOp
from .errors import FaultKind, bug, ub, unsupported
from .operand import OpTy
from .pointer import Pointer
from .primval import PrimVal, PrimValKind, truncate

if TYPE_CHECKING:
	from .eval_context import InterpCx


_COMPARISONS = {
	BinOp.EQ: lambda a, b: a == b,
	BinOp.NE: lambda a, b: a != b,
	BinOp.LT: lambda a, b: a < b,
	BinOp.LE: lambda a, b: a <= b,
	BinOp.GT: lambda a, b: a > b,
	BinOp.GE: lambda a, b: a >= b,
}


def binary_op(ecx: "InterpCx", op: BinOp, left: OpTy, right: OpTy) -> Tuple[PrimVal, bool]:
	l = ecx.read_scalar(left)
	r = ecx.read_scalar(right)
	if op is BinOp.OFFSET:
		pointee = ecx.layout_of(ecx.types.pointee(left.layout.ty))
		count = r.to_int_value()
		return PrimVal.from_ptr(ecx.ptr_offset_inbounds(l.to_ptr(), count * pointee.size)), False
	if l.is_undef or r.is_undef:
		ub(FaultKind.UNINIT_READ, f"{op.name} on uninitialized data")
	if _has_provenance(l) or _has_provenance(r):
		return ptr_binary_op(ecx, op, l, r)
	l, r = _addr_to_int(ecx, l), _addr_to_int(ecx, r)
	if l.kind.is_float:
		return float_binary_op(op, l, r), False
	return int_binary_op(op, l, r)


def _has_provenance(prim: PrimVal) -> bool:
	return prim.is_ptr and prim.ptr is not None and prim.ptr.has_provenance


def _addr_to_int(ecx: "InterpCx", prim: PrimVal) -> PrimVal:
	"""Pointers without provenance compare and compute like usize."""
	if prim.is_ptr:
		assert prim.ptr is not None
		return ecx.usize(prim.ptr.offset)
	return prim


def ptr_binary_op(ecx: "InterpCx", op: BinOp, l: PrimVal, r: PrimVal) -> Tuple[PrimVal, bool]:
	lp = l.ptr if l.is_ptr else None
	rp = r.ptr if r.is_ptr else None
	if op in (BinOp.EQ, BinOp.NE):
		if lp is not None and rp is not None:
			equal = lp == rp
		else:
			ptr = lp if lp is not None else rp
			other = r if lp is not None else l
			assert ptr is not None
			if other.to_bits() != 0:
				unsupported(f"comparing pointer {ptr} with integer {other}", FaultKind.POINTER_ARITHMETIC)
			equal = False  # live allocations are never at address zero
		return PrimVal.from_bool(equal if op is BinOp.EQ else not equal), False
	if op in _COMPARISONS:
		if lp is None or rp is None or lp.alloc_id != rp.alloc_id:
			ub(FaultKind.POINTER_ARITHMETIC, f"ordering comparison of pointers into different allocations ({l}, {r})")
		return PrimVal.from_bool(_COMPARISONS[op](lp.offset, rp.offset)), False
	if op in (BinOp.ADD, BinOp.SUB) and lp is not None and rp is None:
		delta = r.to_int_value()
		if op is BinOp.SUB:
			delta = -delta
		return PrimVal(l.kind, 0, ecx.ptr_wrapping_offset(lp, delta)), False
	if op is BinOp.ADD and rp is not None and lp is None:
		return PrimVal(r.kind, 0, ecx.ptr_wrapping_offset(rp, l.to_int_value())), False
	if op is BinOp.SUB and lp is not None and rp is not None:
		if lp.alloc_id != rp.alloc_id:
			ub(FaultKind.POINTER_ARITHMETIC, f"subtracting pointers into different allocations ({lp}, {rp})")
		return ecx.usize(lp.offset - rp.offset), False
	if op is BinOp.BIT_AND and lp is not None and rp is None:
		# Masking low bits is answerable from the allocation's alignment alone.
		mask = r.to_u64()
		align = ecx.memory.get(lp.alloc_id).align
		usize_max = ecx.target.usize_max
		if (~mask & usize_max) < align:
			return PrimVal(l.kind, 0, Pointer(lp.alloc_id, lp.offset & mask)), False
		if mask < align:
			return ecx.usize(lp.offset & mask), False
	unsupported(f"{op.name} on pointer operands {l} and {r}", FaultKind.POINTER_ARITHMETIC)


def int_binary_op(op: BinOp, l: PrimVal, r: PrimVal) -> Tuple[PrimVal, bool]:
	size = l.kind.size
	bits = size * 8
	if op in (BinOp.SHL, BinOp.SHR):
		if not l.kind.is_int:
			bug(f"{op.name} on {l.kind.label}")
		amount = r.to_int_value()
		overflowed = not 0 <= amount < bits
		amount &= bits - 1
		if op is BinOp.SHL:
			result = l.bits << amount
		else:
			result = l.to_int_value() >> amount
		return PrimVal(l.kind, truncate(result, size)), overflowed
	if l.kind is not r.kind:
		bug(f"{op.name} on mismatched operands {l.kind.label} and {r.kind.label}")
	a = l.to_int_value()
	b = r.to_int_value()
	if op in _COMPARISONS:
		return PrimVal.from_bool(_COMPARISONS[op](a, b)), False
	if op is BinOp.BIT_AND:
		return PrimVal(l.kind, l.bits & r.bits), False
	if op is BinOp.BIT_OR:
		return PrimVal(l.kind, l.bits | r.bits), False
	if op is BinOp.BIT_XOR:
		return PrimVal(l.kind, l.bits ^ r.bits), False
	if not l.kind.is_int:
		bug(f"{op.name} on {l.kind.label}")
	signed = l.kind.is_signed_int
	lo, hi = (-(1 << (bits - 1)), (1 << (bits - 1)) - 1) if signed else (0, (1 << bits) - 1)
	if op in (BinOp.DIV, BinOp.REM):
		if b == 0:
			if op is BinOp.DIV:
				ub(FaultKind.DIVISION_BY_ZERO, "dividing by zero")
			ub(FaultKind.DIVISION_BY_ZERO, "calculating the remainder with a divisor of zero")
		if signed and a == lo and b == -1:
			ub(FaultKind.OVERFLOW, f"overflow in signed {'division' if op is BinOp.DIV else 'remainder'} ({a} / -1)")
		quotient = abs(a) // abs(b)
		if (a < 0) != (b < 0):
			quotient = -quotient
		result = quotient if op is BinOp.DIV else a - quotient * b
		return PrimVal(l.kind, truncate(result, size)), False
	if op is BinOp.ADD:
		result = a + b
	elif op is BinOp.SUB:
		result = a - b
	elif op is BinOp.MUL:
		result = a * b
	else:
		bug(f"unknown integer operator {op.name}")
	return PrimVal(l.kind, truncate(result, size)), not lo <= result <= hi


def float_binary_op(op: BinOp, l: PrimVal, r: PrimVal) -> PrimVal:
	if l.kind is not r.kind:
		bug(f"{op.name} on mismatched operands {l.kind.label} and {r.kind.label}")
	a = l.to_float()
	b = r.to_float()
	if op in _COMPARISONS:
		return PrimVal.from_bool(_COMPARISONS[op](a, b))
	if op is BinOp.ADD:
		result = a + b
	elif op is BinOp.SUB:
		result = a - b
	elif op is BinOp.MUL:
		result = a * b
	elif op is BinOp.DIV:
		if b == 0.0:
			result = math.nan if a == 0.0 or math.isnan(a) else math.copysign(math.inf, a) * math.copysign(1.0, b)
		else:
			result = a / b
	elif op is BinOp.REM:
		if b == 0.0 or math.isinf(a) or math.isnan(a) or math.isnan(b):
			result = math.nan
		else:
			result = math.fmod(a, b)
	else:
		bug(f"{op.name} on {l.kind.label}")
	return PrimVal.from_float(result, l.kind.size)


def unary_op(ecx: "InterpCx", op: UnOp, operand: OpTy) -> PrimVal:
	v = ecx.read_scalar(operand)
	if v.is_undef:
		ub(FaultKind.UNINIT_READ, f"{op.name} on uninitialized data")
	if op is UnOp.NOT:
		if v.kind is PrimValKind.BOOL:
			return PrimVal.from_bool(not v.to_bool())
		if v.kind.is_int:
			return PrimVal(v.kind, truncate(~v.bits, v.kind.size))
		bug(f"NOT on {v.kind.label}")
	if op is UnOp.NEG:
		if v.kind.is_float:
			return PrimVal.from_float(-v.to_float(), v.kind.size)
		if v.kind.is_signed_int:
			return PrimVal(v.kind, truncate(-v.to_i64(), v.kind.size))
		bug(f"NEG on {v.kind.label}")
	bug(f"unknown unary operator {op}")


__all__ = ["binary_op", "ptr_binary_op", "int_binary_op", "float_binary_op", "unary_op"]
