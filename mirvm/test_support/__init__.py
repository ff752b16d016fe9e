# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Shared helpers for tests that build MIR programs by hand.

These avoid re-spelling MirBuilder/FnSig boilerplate, the block split
around every Call terminator, and the dance of giving a function a return
slot and stepping it to completion on a fresh InterpCx.
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence

from mirvm.core.target import TargetSpec
from mirvm.core.types_core import FnSig, TypeId
from mirvm.interpret.eval_context import InterpCx
from mirvm.interpret.frame import StackPopCleanup
from mirvm.interpret.machine import Machine
from mirvm.interpret.memory import MemoryKind
from mirvm.interpret.operand import OpTy
from mirvm.interpret.place import MemPlace, PlaceTy
from mirvm.interpret.primval import PrimVal
from mirvm.interpret.value import ByVal, Value
from mirvm.mir import mir_nodes as M
from mirvm.mir.builder import MirBuilder


def add_fn(
	program: M.Program,
	name: str,
	params: Sequence[TypeId],
	ret: TypeId,
	body: Callable[[MirBuilder], None],
	*,
	is_const: bool = False,
) -> M.MirFunc:
	"""Build a function with `body(builder)` and register it on `program`."""
	b = MirBuilder(name, FnSig(tuple(params), ret), is_const=is_const)
	body(b)
	return program.add_function(b.finish())


def emit_call(
	b: MirBuilder,
	callee: M.Callee,
	args: Sequence[M.Operand],
	dest: Optional[M.Place],
) -> M.BlockId:
	"""Terminate the current block with a call and continue in a fresh block."""
	nxt = b.new_block()
	b.set_terminator(M.Call(callee, tuple(args), dest, nxt))
	b.set_block(nxt)
	return nxt


def intrinsic(
	program: M.Program,
	name: str,
	params: Sequence[TypeId],
	ret: TypeId,
	generics: Sequence[TypeId] = (),
) -> M.Constant:
	"""Callee operand for intrinsic `name::<generics>`."""
	return M.Constant(program.types.new_fn_def(name, params, ret, generics))


def fn_operand(program: M.Program, name: str) -> M.Constant:
	"""Callee operand for the MIR function `name`."""
	return M.Constant(program.fn_item(name))


def new_ecx(
	program: M.Program,
	*,
	machine: Machine | None = None,
	target: TargetSpec | None = None,
) -> InterpCx:
	return InterpCx(program, machine, target)


def start(ecx: InterpCx, name: str, args: Sequence[OpTy] = ()) -> PlaceTy:
	"""Push the outermost frame of `name`; the result slot is GLOBAL memory."""
	func = ecx.function(name)
	layout = ecx.layout_of(func.sig.ret)
	ptr = ecx.memory.allocate(layout.size, layout.align, MemoryKind.GLOBAL)
	place = PlaceTy(MemPlace(ptr, layout.align), layout)
	ecx.push_frame(func, list(args), place, None, StackPopCleanup.NONE)
	return place


def run_fn(ecx: InterpCx, name: str, args: Sequence[OpTy] = ()) -> Value:
	"""Run `name` to completion and return the value it produced."""
	place = start(ecx, name, args)
	ecx.run()
	return ecx.read_value(OpTy.indirect(place.mplace, place.layout))


def scalar_arg(ecx: InterpCx, prim: PrimVal, ty: TypeId) -> OpTy:
	return OpTy.immediate(ByVal(prim), ecx.layout_of(ty))


__all__ = [
	"add_fn",
	"emit_call",
	"intrinsic",
	"fn_operand",
	"new_ecx",
	"start",
	"run_fn",
	"scalar_arg",
]
