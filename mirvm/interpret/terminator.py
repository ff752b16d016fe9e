# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Terminator evaluation: control flow, calls, drops and asserts.

Calls resolve their callee to a function name first (fn item, fn pointer,
or vtable slot), check the call site's signature against the callee's, and
then either push a MIR frame, run an intrinsic in place, or hand the call
to the machine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from mirvm.core.layout import Abi
from mirvm.core.types_core import FnSig, TypeId, TypeKind
from mirvm.mir import mir_nodes as M
from . import intrinsics
from .errors import FaultKind, InterpError, bug, ub
from .frame import StackPopCleanup
from .operand import OpTy
from .place import PlaceTy
from .primval import PrimVal, truncate
from .traits import get_vtable_method, read_drop_fn
from .value import ByVal, ByValPair

if TYPE_CHECKING:
	from .eval_context import InterpCx


_ASSERT_FAULTS = {
	M.AssertKind.OVERFLOW: (FaultKind.OVERFLOW, "attempt to compute with overflow"),
	M.AssertKind.DIVISION_BY_ZERO: (FaultKind.DIVISION_BY_ZERO, "attempt to divide by zero"),
	M.AssertKind.REMAINDER_BY_ZERO: (
		FaultKind.DIVISION_BY_ZERO,
		"attempt to calculate the remainder with a divisor of zero",
	),
	M.AssertKind.BOUNDS_CHECK: (FaultKind.OUT_OF_BOUNDS, "index out of bounds"),
	M.AssertKind.GENERIC: (FaultKind.ASSERT_FAILED, "assertion failed"),
}


def eval_terminator(ecx: "InterpCx", term: M.Terminator) -> None:
	if isinstance(term, M.Goto):
		ecx.goto_block(term.target)

	elif isinstance(term, M.SwitchInt):
		op = ecx.eval_operand(term.discr)
		bits = ecx.read_scalar(op).to_bits()
		size = op.layout.size
		for value, target in zip(term.values, term.targets):
			if truncate(value, size) == bits:
				ecx.goto_block(target)
				return
		ecx.goto_block(term.otherwise)

	elif isinstance(term, M.Return):
		ecx.pop_frame()

	elif isinstance(term, M.Unreachable):
		ub(FaultKind.UNREACHABLE, "entered unreachable code")

	elif isinstance(term, M.Abort):
		raise InterpError(FaultKind.ABORTED, "the program aborted")

	elif isinstance(term, M.Drop):
		drop_in_place(ecx, term.place, term.target)

	elif isinstance(term, M.Assert):
		cond = ecx.read_scalar(ecx.eval_operand(term.cond)).to_bool()
		if cond == term.expected:
			ecx.goto_block(term.target)
			return
		kind, default = _ASSERT_FAULTS[term.kind]
		raise InterpError(kind, term.message or default)

	elif isinstance(term, M.Call):
		eval_call(ecx, term)

	else:
		bug(f"unknown terminator {type(term).__name__}")


# Calls

def eval_call(ecx: "InterpCx", term: M.Call) -> None:
	dest = ecx.eval_place(term.destination) if term.destination is not None else None
	if isinstance(term.func, M.Virtual):
		eval_virtual_call(ecx, term.func, term.args, dest, term.target)
		return
	callee = ecx.eval_operand(term.func)
	name, site_sig, generics = resolve_callee(ecx, callee)
	args = [ecx.eval_operand(arg) for arg in term.args]
	call_function(ecx, name, site_sig, generics, args, dest, term.target)


def resolve_callee(ecx: "InterpCx", callee: OpTy) -> Tuple[str, FnSig, Tuple[TypeId, ...]]:
	"""`(function name, call-site signature, generic arguments)` of a callee operand."""
	td = ecx.types.get(callee.layout.ty)
	if td.kind is TypeKind.FN_DEF:
		assert td.fn_name is not None and td.sig is not None
		return td.fn_name, td.sig, td.param_types
	if td.kind is TypeKind.FN_PTR:
		assert td.sig is not None
		ptr = ecx.read_scalar(callee).to_ptr()
		if ptr.is_null:
			ub(FaultKind.NULL_POINTER, "calling a null function pointer")
		return ecx.memory.get_fn(ptr), td.sig, ()
	bug(f"callee of non-callable type {td.name}")


def _sig_str(ecx: "InterpCx", sig: FnSig) -> str:
	params = ", ".join(ecx.types.display(p) for p in sig.params)
	return f"fn({params}) -> {ecx.types.display(sig.ret)}"


def call_function(
	ecx: "InterpCx",
	name: str,
	site_sig: FnSig,
	generics: Sequence[TypeId],
	args: List[OpTy],
	dest: Optional[PlaceTy],
	target: Optional[M.BlockId],
) -> None:
	func = ecx.program.functions.get(name)
	if func is not None:
		if func.sig != site_sig or len(args) != func.arg_count:
			ub(
				FaultKind.SIGNATURE_MISMATCH,
				f"calling {name} of type {_sig_str(ecx, func.sig)} as {_sig_str(ecx, site_sig)}",
			)
		ecx.machine.before_call(ecx, func)
		ecx.push_frame(func, args, dest, target, StackPopCleanup.GOTO)
		return
	if intrinsics.is_intrinsic(name):
		intrinsics.call_intrinsic(ecx, name, tuple(generics), args, dest)
	else:
		ecx.machine.call_extern(ecx, name, args, dest)
	if target is None:
		ub(FaultKind.UNREACHABLE, f"{name} returned from a call marked as diverging")
	ecx.goto_block(target)


def eval_virtual_call(
	ecx: "InterpCx",
	callee: M.Virtual,
	arg_operands: Sequence[M.Operand],
	dest: Optional[PlaceTy],
	target: Optional[M.BlockId],
) -> None:
	"""Dispatch through the vtable of the trait object passed as `self`."""
	tdef = ecx.program.traits.get(callee.trait)
	if tdef is None:
		bug(f"unknown trait {callee.trait!r}")
	if not arg_operands:
		bug(f"virtual call of {callee.trait} method #{callee.index} without a receiver")
	receiver = ecx.read_value(ecx.eval_operand(arg_operands[0]))
	if not isinstance(receiver, ByValPair):
		bug(f"virtual call receiver {receiver} is not a trait object")
	vtable = receiver.expect_vtable(ecx.memory)
	name = get_vtable_method(ecx, vtable, callee.trait, callee.index)
	method_name, site_sig = tdef.methods[callee.index]
	func = ecx.program.functions.get(name)
	if func is None:
		ub(FaultKind.INVALID_FN_POINTER, f"vtable entry {name} of {callee.trait}::{method_name} has no MIR body")
	sig = func.sig
	if (
		len(sig.params) != len(site_sig.params)
		or sig.params[1:] != site_sig.params[1:]
		or sig.ret != site_sig.ret
		or not ecx.types.is_pointer(sig.params[0])
		or ecx.layout_of(sig.params[0]).abi is not Abi.SCALAR
	):
		ub(
			FaultKind.SIGNATURE_MISMATCH,
			f"{callee.trait}::{method_name} expects {_sig_str(ecx, site_sig)}, vtable entry {name} is {_sig_str(ecx, sig)}",
		)
	self_arg = OpTy.immediate(ByVal(PrimVal.from_ptr(receiver.a.to_ptr())), ecx.layout_of(sig.params[0]))
	args = [self_arg] + [ecx.eval_operand(arg) for arg in arg_operands[1:]]
	ecx.machine.before_call(ecx, func)
	ecx.push_frame(func, args, dest, target, StackPopCleanup.GOTO)


# Drops

def drop_in_place(ecx: "InterpCx", place: M.Place, target: M.BlockId) -> None:
	"""Call the drop function of the value at `place`, if its type has one."""
	pt = ecx.eval_place(place)
	td = ecx.types.get(pt.layout.ty)
	if td.kind is TypeKind.DYN:
		mp = ecx.force_mplace(pt)
		if mp.meta is None:
			bug("dropping a trait object without a vtable")
		drop_fn = read_drop_fn(ecx, mp.meta.to_ptr())
		arg_value = ByVal(PrimVal.from_ptr(mp.ptr))
	elif td.drop_fn is not None:
		mp = ecx.force_mplace(pt)
		drop_fn = td.drop_fn
		arg_value = mp.to_ref()
	else:
		drop_fn = None
	if drop_fn is None:
		ecx.goto_block(target)
		return
	func = ecx.program.functions.get(drop_fn)
	if func is None:
		ub(FaultKind.INVALID_FN_POINTER, f"drop function {drop_fn} has no MIR body")
	if func.arg_count != 1 or not ecx.types.is_pointer(func.sig.params[0]):
		ub(FaultKind.SIGNATURE_MISMATCH, f"drop function {drop_fn} must take one pointer, it is {_sig_str(ecx, func.sig)}")
	ecx.machine.before_call(ecx, func)
	ecx.push_frame(func, [OpTy.immediate(arg_value, ecx.layout_of(func.sig.params[0]))], None, target, StackPopCleanup.GOTO)


__all__ = [
	"eval_terminator",
	"eval_call",
	"resolve_callee",
	"call_function",
	"eval_virtual_call",
	"drop_in_place",
]
