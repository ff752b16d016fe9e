# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Step loop, frames, engine states, fuel and unwinding."""

import pytest

from mirvm.interpret.errors import FaultKind, InterpError, ResourceExhaustion
from mirvm.interpret.eval_context import InterpCx
from mirvm.interpret.frame import EngineState
from mirvm.interpret.machine import CheckedMachine, MachineConfig
from mirvm.interpret.memory import MemoryKind
from mirvm.interpret.primval import PrimVal
from mirvm.interpret.value import ByVal
from mirvm.mir import mir_nodes as M
from mirvm.test_support import add_fn, emit_call, fn_operand, new_ecx, run_fn, scalar_arg, start


def _program_with_add() -> M.Program:
	program = M.Program()
	u32 = program.types.ensure_uint(32)

	def body(b):
		b.assign(b.ret(), M.BinaryOp(M.BinOp.ADD, b.copy(b.arg(0)), b.copy(b.arg(1))))
		b.set_terminator(M.Return())

	add_fn(program, "add", [u32, u32], u32, body)
	return program


def test_run_function_with_arguments() -> None:
	program = _program_with_add()
	u32 = program.types.ensure_uint(32)
	ecx = new_ecx(program)
	args = [scalar_arg(ecx, PrimVal.from_uint(40, 4), u32), scalar_arg(ecx, PrimVal.from_uint(2, 4), u32)]
	value = run_fn(ecx, "add", args)
	assert value == ByVal(PrimVal.from_uint(42, 4))
	assert ecx.state is EngineState.TERMINATED
	assert ecx.stack == []


def test_engine_states_across_a_call() -> None:
	program = _program_with_add()
	u32 = program.types.ensure_uint(32)

	def main(b):
		x = b.new_local(u32, "x")
		b.assign(x, M.Use(b.const(u32, 2)))
		emit_call(b, fn_operand(program, "add"), [b.copy(x), b.const(u32, 3)], b.ret())
		b.set_terminator(M.Return())

	add_fn(program, "main", [], u32, main)
	ecx = new_ecx(program)
	place = start(ecx, "main")
	assert ecx.state is EngineState.FRAME_ENTRY
	assert ecx.step()  # x = 2
	assert ecx.state is EngineState.STEPPING
	assert ecx.step()  # call add
	assert ecx.state is EngineState.FRAME_ENTRY
	assert len(ecx.stack) == 2
	assert ecx.step()  # _0 = a + b
	assert ecx.step()  # return from add
	assert ecx.state is EngineState.FRAME_EXIT
	assert len(ecx.stack) == 1
	assert not ecx.step()  # return from main
	assert ecx.state is EngineState.TERMINATED
	assert ecx.steps == 5
	assert not ecx.step()
	assert ecx.memory.read_uint(place.mplace.ptr, 4) == 5


def test_switch_int_selects_branch() -> None:
	program = M.Program()
	t = program.types
	u8 = t.ensure_uint(8)
	u32 = t.ensure_uint(32)

	def body(b):
		one, two, other = b.new_block(), b.new_block(), b.new_block()
		b.set_terminator(M.SwitchInt(b.copy(b.arg(0)), (1, 2), (one, two), other))
		for block, result in ((one, 10), (two, 20), (other, 99)):
			b.set_block(block)
			b.assign(b.ret(), M.Use(b.const(u32, result)))
			b.set_terminator(M.Return())

	add_fn(program, "pick", [u8], u32, body)
	for arg, expected in ((1, 10), (2, 20), (7, 99)):
		ecx = new_ecx(program)
		value = run_fn(ecx, "pick", [scalar_arg(ecx, PrimVal.from_uint(arg, 1), u8)])
		assert value == ByVal(PrimVal.from_uint(expected, 4))


def test_step_limit_faults() -> None:
	program = M.Program()
	unit = program.types.ensure_unit()

	def body(b):
		b.set_terminator(M.Goto(0))

	add_fn(program, "spin", [], unit, body)
	ecx = new_ecx(program, machine=CheckedMachine(MachineConfig(step_limit=10)))
	start(ecx, "spin")
	with pytest.raises(ResourceExhaustion, match="step limit of 10") as exc:
		ecx.run()
	assert exc.value.kind is FaultKind.STEP_LIMIT
	assert ecx.state is EngineState.FAULTED
	assert ecx.fault is exc.value
	assert ecx.stack == []
	assert ecx.steps == 11


def test_unbounded_recursion_overflows_stack() -> None:
	program = M.Program()
	unit = program.types.ensure_unit()
	self_ty = program.types.new_fn_def("recurse", [], unit)

	def body(b):
		emit_call(b, M.Constant(self_ty), [], b.ret())
		b.set_terminator(M.Return())

	add_fn(program, "recurse", [], unit, body)
	ecx = new_ecx(program, machine=CheckedMachine(MachineConfig(stack_limit=8)))
	start(ecx, "recurse")
	with pytest.raises(ResourceExhaustion) as exc:
		ecx.run()
	assert exc.value.kind is FaultKind.STACK_OVERFLOW
	assert exc.value.span.function == "recurse"


def test_fault_unwinds_and_frees_stack_memory() -> None:
	program = M.Program()
	t = program.types
	u64 = t.ensure_uint(64)
	unit = t.ensure_unit()

	def boom(b):
		b.set_terminator(M.Unreachable())

	add_fn(program, "boom", [], unit, boom)

	def main(b):
		x = b.new_local(u64, "x")
		r = b.new_local(t.new_ref(u64, False), "r")
		done = b.new_local(unit)
		b.assign(x, M.Use(b.const(u64, 1)))
		b.assign(r, M.Ref(x))
		emit_call(b, fn_operand(program, "boom"), [], done)
		b.assign(b.ret(), M.Use(b.copy(x)))
		b.set_terminator(M.Return())

	add_fn(program, "main", [], u64, main)
	ecx = new_ecx(program)
	start(ecx, "main")
	with pytest.raises(InterpError) as exc:
		ecx.run()
	assert exc.value.kind is FaultKind.UNREACHABLE
	assert exc.value.span.function == "boom"
	assert ecx.state is EngineState.FAULTED
	kinds = [alloc.kind for _, alloc in ecx.memory.live_allocations()]
	assert MemoryKind.STACK not in kinds


def test_use_of_moved_local() -> None:
	program = M.Program()
	u32 = program.types.ensure_uint(32)

	def body(b):
		x = b.new_local(u32, "x")
		y = b.new_local(u32, "y")
		b.assign(x, M.Use(b.const(u32, 1)))
		b.assign(y, M.Use(b.move(x)))
		b.assign(b.ret(), M.Use(b.copy(x)))
		b.set_terminator(M.Return())

	add_fn(program, "f", [], u32, body)
	ecx = new_ecx(program)
	with pytest.raises(InterpError, match="moved-out local") as exc:
		run_fn(ecx, "f")
	assert exc.value.kind is FaultKind.DEAD_LOCAL
	assert exc.value.span.index == 2


def test_read_of_uninitialized_local() -> None:
	program = M.Program()
	u32 = program.types.ensure_uint(32)

	def body(b):
		x = b.new_local(u32, "x")
		b.assign(b.ret(), M.Use(b.copy(x)))
		b.set_terminator(M.Return())

	add_fn(program, "f", [], u32, body)
	with pytest.raises(InterpError) as exc:
		run_fn(new_ecx(program), "f")
	assert exc.value.kind is FaultKind.UNINIT_READ


def test_storage_dead_ends_local_lifetime() -> None:
	program = M.Program()
	u32 = program.types.ensure_uint(32)

	def body(b):
		x = b.new_local(u32, "x")
		b.emit(M.StorageLive(x.local))
		b.assign(x, M.Use(b.const(u32, 1)))
		b.emit(M.StorageDead(x.local))
		b.assign(b.ret(), M.Use(b.copy(x)))
		b.set_terminator(M.Return())

	add_fn(program, "f", [], u32, body)
	with pytest.raises(InterpError) as exc:
		run_fn(new_ecx(program), "f")
	assert exc.value.kind is FaultKind.UNINIT_READ


def test_failed_bounds_assert() -> None:
	program = M.Program()
	t = program.types
	unit = t.ensure_unit()

	def body(b):
		ok = b.new_block()
		b.set_terminator(
			M.Assert(b.const(t.ensure_bool(), False), True, M.AssertKind.BOUNDS_CHECK, ok, "index 4 out of range for length 3")
		)
		b.set_block(ok)
		b.set_terminator(M.Return())

	add_fn(program, "f", [], unit, body)
	with pytest.raises(InterpError, match="index 4 out of range") as exc:
		run_fn(new_ecx(program), "f")
	assert exc.value.kind is FaultKind.OUT_OF_BOUNDS


def test_abort_terminator() -> None:
	program = M.Program()

	def body(b):
		b.set_terminator(M.Abort())

	add_fn(program, "f", [], program.types.ensure_unit(), body)
	with pytest.raises(InterpError) as exc:
		run_fn(new_ecx(program), "f")
	assert exc.value.kind is FaultKind.ABORTED


def test_call_with_wrong_signature() -> None:
	program = _program_with_add()
	t = program.types
	u32 = t.ensure_uint(32)
	u64 = t.ensure_uint(64)
	# fn pointer type claims add takes one u64
	wrong = t.new_fn_ptr([u64], u32)

	def main(b):
		fp = b.new_local(wrong, "fp")
		b.assign(fp, M.Use(b.const(wrong, M.FnRef("add"))))
		emit_call(b, b.copy(fp), [b.const(u64, 1)], b.ret())
		b.set_terminator(M.Return())

	add_fn(program, "main", [], u32, main)
	with pytest.raises(InterpError, match="calling add of type") as exc:
		run_fn(new_ecx(program), "main")
	assert exc.value.kind is FaultKind.SIGNATURE_MISMATCH


def test_call_through_function_pointer() -> None:
	program = _program_with_add()
	t = program.types
	u32 = t.ensure_uint(32)
	fn_ty = t.new_fn_ptr([u32, u32], u32)

	def main(b):
		fp = b.new_local(fn_ty, "fp")
		b.assign(fp, M.Use(b.const(fn_ty, M.FnRef("add"))))
		emit_call(b, b.copy(fp), [b.const(u32, 20), b.const(u32, 22)], b.ret())
		b.set_terminator(M.Return())

	add_fn(program, "main", [], u32, main)
	assert run_fn(new_ecx(program), "main") == ByVal(PrimVal.from_uint(42, 4))


def test_state_after_construction() -> None:
	ecx = InterpCx(M.Program())
	assert ecx.state is EngineState.TERMINATED
	assert not ecx.step()
