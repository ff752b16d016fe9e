# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Statement and rvalue evaluation.

Terminators live in `terminator.py`; everything that ends up as "compute a
value and store it in a place" lives here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mirvm.core.layout import Abi
from mirvm.core.types_core import TypeKind
from mirvm.mir import mir_nodes as M
from .cast import cast_value
from .errors import FaultKind, bug, ub
from .operator import binary_op, unary_op
from .place import PlaceTy
from .primval import PrimVal, int_kind
from .value import ByVal, ByValPair

if TYPE_CHECKING:
	from .eval_context import InterpCx


def eval_statement(ecx: "InterpCx", stmt: M.Statement) -> None:
	if isinstance(stmt, M.Assign):
		dest = ecx.eval_place(stmt.place)
		eval_rvalue_into_place(ecx, stmt.rvalue, dest)
	elif isinstance(stmt, M.SetDiscriminant):
		ecx.write_discriminant(ecx.eval_place(stmt.place), stmt.variant)
	elif isinstance(stmt, M.StorageLive):
		ecx.storage_live(stmt.local)
	elif isinstance(stmt, M.StorageDead):
		ecx.storage_dead(stmt.local)
	elif isinstance(stmt, M.Nop):
		pass
	else:
		bug(f"unknown statement {type(stmt).__name__}")


def eval_rvalue_into_place(ecx: "InterpCx", rvalue: M.Rvalue, dest: PlaceTy) -> None:
	if isinstance(rvalue, M.Use):
		ecx.copy_op(ecx.eval_operand(rvalue.operand), dest)

	elif isinstance(rvalue, M.Repeat):
		op = ecx.eval_operand(rvalue.operand)
		value = ecx.read_value(op)
		mp = ecx.force_mplace(dest)
		for i in range(rvalue.count):
			ecx.write_value_to_ptr(value, mp.ptr.offset_by(i * op.layout.size), op.layout)

	elif isinstance(rvalue, (M.Ref, M.AddressOf)):
		mp = ecx.force_mplace(ecx.eval_place(rvalue.place))
		ecx.write_value(mp.to_ref(), dest)

	elif isinstance(rvalue, M.Len):
		length = ecx.place_len(ecx.eval_place(rvalue.place))
		ecx.write_value(ByVal(ecx.usize(length)), dest)

	elif isinstance(rvalue, M.Cast):
		value = cast_value(ecx, rvalue.kind, ecx.eval_operand(rvalue.operand), rvalue.ty)
		ecx.write_value(value, dest)

	elif isinstance(rvalue, M.BinaryOp):
		left = ecx.eval_operand(rvalue.left)
		right = ecx.eval_operand(rvalue.right)
		result, overflowed = binary_op(ecx, rvalue.op, left, right)
		if overflowed and rvalue.op in (M.BinOp.SHL, M.BinOp.SHR):
			ub(FaultKind.INVALID_SHIFT, f"shift by {ecx.read_scalar(right).to_int_value()} overflows {ecx.types.display(left.layout.ty)}")
		ecx.write_value(ByVal(result), dest)

	elif isinstance(rvalue, M.CheckedBinaryOp):
		left = ecx.eval_operand(rvalue.left)
		right = ecx.eval_operand(rvalue.right)
		result, overflowed = binary_op(ecx, rvalue.op, left, right)
		if dest.layout.abi is not Abi.SCALAR_PAIR:
			bug(f"checked {rvalue.op.name} needs a (T, bool) destination, got {ecx.types.display(dest.layout.ty)}")
		ecx.write_value(ByValPair(result, PrimVal.from_bool(overflowed)), dest)

	elif isinstance(rvalue, M.UnaryOp):
		ecx.write_value(ByVal(unary_op(ecx, rvalue.op, ecx.eval_operand(rvalue.operand))), dest)

	elif isinstance(rvalue, M.Discriminant):
		discr, _ = ecx.read_discriminant(ecx.place_to_op(ecx.eval_place(rvalue.place)))
		scalar = dest.layout.scalar
		ecx.write_value(ByVal(PrimVal.from_bits(discr, int_kind(scalar.size, scalar.signed))), dest)

	elif isinstance(rvalue, M.Aggregate):
		eval_aggregate(ecx, rvalue, dest)

	elif isinstance(rvalue, M.NullaryOp):
		layout = ecx.layout_of(rvalue.ty)
		if layout.unsized:
			bug(f"{rvalue.op.name} of unsized type {ecx.types.display(rvalue.ty)}")
		amount = layout.size if rvalue.op is M.NullOp.SIZE_OF else layout.align
		ecx.write_value(ByVal(ecx.usize(amount)), dest)

	else:
		bug(f"unknown rvalue {type(rvalue).__name__}")


def eval_aggregate(ecx: "InterpCx", rvalue: M.Aggregate, dest: PlaceTy) -> None:
	layout = dest.layout
	if rvalue.kind is M.AggregateKind.ARRAY:
		if layout.elem is None:
			bug(f"array aggregate into non-array {ecx.types.display(layout.ty)}")
		elem = ecx.layout_of(layout.elem)
		mp = ecx.force_mplace(dest)
		for i, operand in enumerate(rvalue.operands):
			ecx.copy_op(ecx.eval_operand(operand), PlaceTy(mp.offset(i * elem.size, elem.align), elem))
		return
	is_enum = ecx.types.kind(rvalue.ty) is TypeKind.ENUM
	if is_enum and rvalue.variant is None:
		bug(f"enum aggregate of {ecx.types.display(rvalue.ty)} without a variant")
	target = dest.with_variant(rvalue.variant) if is_enum else dest
	field_types = ecx.types.field_types(rvalue.ty, rvalue.variant if is_enum else None)
	if len(field_types) != len(rvalue.operands):
		bug(f"{ecx.types.display(rvalue.ty)} has {len(field_types)} fields, aggregate has {len(rvalue.operands)}")
	for i, operand in enumerate(rvalue.operands):
		ecx.copy_op(ecx.eval_operand(operand), ecx.place_field(target, i, field_types[i]))
	if is_enum:
		assert rvalue.variant is not None
		ecx.write_discriminant(dest, rvalue.variant)
	elif layout.is_zst:
		ecx.write_value(ecx.zst_value(layout), dest)


__all__ = ["eval_statement", "eval_rvalue_into_place", "eval_aggregate"]
