# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""run_checked: checked execution, captured output, faults and leaks."""

import logging

import pytest

from mirvm.interpret.errors import InternalInvariantViolation
from mirvm.interpret.machine import CheckedMachine, MachineConfig
from mirvm.interpret.memory import MemoryKind
from mirvm.interpret.primval import PrimVal
from mirvm.interpret.run import run_checked
from mirvm.mir import mir_nodes as M
from mirvm.test_support import add_fn, emit_call, intrinsic


def _main(program, ret, body):
	def wrapped(b):
		body(b)
		b.set_terminator(M.Return())

	add_fn(program, "main", [], ret, wrapped)


def test_clean_run() -> None:
	program = M.Program()
	u32 = program.types.ensure_uint(32)
	_main(program, u32, lambda b: b.assign(b.ret(), M.Use(b.const(u32, 42))))
	result = run_checked(program)
	assert result.ok
	assert not result.faulted
	assert result.scalar == PrimVal.from_uint(42, 4)
	assert result.leaks == []
	assert result.output == b""


def _print(program, b, text: bytes) -> None:
	t = program.types
	usize = t.ensure_usize()
	ptr = t.new_raw_ptr(t.ensure_uint(8), False)
	callee = intrinsic(program, "write_output", [ptr, usize], t.ensure_unit())
	emit_call(b, callee, [b.const(ptr, text), b.const(usize, len(text))], None)


def test_output_is_captured() -> None:
	program = M.Program()
	unit = program.types.ensure_unit()

	def body(b):
		_print(program, b, b"hello, ")
		_print(program, b, b"world\n")

	_main(program, unit, body)
	result = run_checked(program)
	assert result.ok
	assert result.output == b"hello, world\n"


def test_machine_can_be_supplied() -> None:
	program = M.Program()
	unit = program.types.ensure_unit()
	_main(program, unit, lambda b: _print(program, b, b"x"))
	machine = CheckedMachine()
	run_checked(program, machine=machine)
	assert bytes(machine.output) == b"x"


def test_fault_becomes_diagnostic() -> None:
	program = M.Program()
	u32 = program.types.ensure_uint(32)

	def body(b):
		b.assign(b.ret(), M.BinaryOp(M.BinOp.DIV, b.const(u32, 1), b.const(u32, 0)))

	_main(program, u32, body)
	result = run_checked(program)
	assert not result.ok
	assert result.faulted
	assert result.value is None
	[diag] = result.diagnostics
	assert diag.code == "DIVISION_BY_ZERO"
	assert diag.phase == "interpret"
	assert diag.span.function == "main"
	assert diag.span.index == 0
	assert "main:bb0[0]" in diag.format_human()


def _leaky_program(free: bool) -> M.Program:
	program = M.Program()
	t = program.types
	usize = t.ensure_usize()
	raw = t.new_raw_ptr(t.ensure_uint(8), True)

	def body(b):
		p = b.new_local(raw, "p")
		emit_call(b, intrinsic(program, "heap_alloc", [usize, usize], raw), [b.const(usize, 16), b.const(usize, 8)], p)
		if free:
			dealloc = intrinsic(program, "heap_dealloc", [raw, usize, usize], t.ensure_unit())
			emit_call(b, dealloc, [b.copy(p), b.const(usize, 16), b.const(usize, 8)], None)

	_main(program, t.ensure_unit(), body)
	return program


def test_leak_is_reported() -> None:
	result = run_checked(_leaky_program(free=False))
	assert len(result.leaks) == 1
	assert not result.ok
	[diag] = result.diagnostics
	assert diag.code == "MEMORY_LEAK"
	assert diag.phase == "leak-check"
	assert "HEAP, 16 bytes" in diag.message


def test_leak_is_logged(caplog) -> None:
	with caplog.at_level(logging.WARNING, logger="mirvm.interpret.memory"):
		run_checked(_leaky_program(free=False))
	assert "memory leaked" in caplog.text


def test_freed_memory_is_not_a_leak() -> None:
	result = run_checked(_leaky_program(free=True))
	assert result.ok
	assert result.leaks == []


def test_leak_check_can_be_disabled() -> None:
	result = run_checked(_leaky_program(free=False), config=MachineConfig(leak_check=False))
	assert result.ok
	assert result.leaks == []


def test_double_free_is_reported() -> None:
	program = M.Program()
	t = program.types
	usize = t.ensure_usize()
	raw = t.new_raw_ptr(t.ensure_uint(8), True)

	def body(b):
		p = b.new_local(raw, "p")
		emit_call(b, intrinsic(program, "heap_alloc", [usize, usize], raw), [b.const(usize, 4), b.const(usize, 4)], p)
		dealloc = intrinsic(program, "heap_dealloc", [raw, usize, usize], t.ensure_unit())
		for _ in range(2):
			emit_call(b, dealloc, [b.copy(p), b.const(usize, 4), b.const(usize, 4)], None)

	_main(program, t.ensure_unit(), body)
	[diag] = run_checked(program).diagnostics
	assert diag.code == "DOUBLE_FREE"
	assert diag.span.block == 2


def test_mutable_static() -> None:
	program = M.Program()
	t = program.types
	u32 = t.ensure_uint(32)
	ref = t.new_ref(u32, True)

	def init(b):
		b.assign(b.ret(), M.Use(b.const(u32, 1)))
		b.set_terminator(M.Return())

	add_fn(program, "counter_init", [], u32, init)
	program.add_static(M.StaticDef("COUNTER", u32, "counter_init", mutable=True))

	def body(b):
		r = b.new_local(ref, "r")
		b.assign(r, M.Use(b.const(ref, M.StaticRef("COUNTER"))))
		b.assign(r.deref(), M.BinaryOp(M.BinOp.ADD, b.copy(r.deref()), b.const(u32, 10)))
		b.assign(r, M.Use(b.const(ref, M.StaticRef("COUNTER"))))
		b.assign(b.ret(), M.Use(b.copy(r.deref())))

	_main(program, u32, body)
	result = run_checked(program)
	assert result.ok
	assert result.scalar == PrimVal.from_uint(11, 4)


def test_write_to_immutable_static() -> None:
	program = M.Program()
	t = program.types
	u32 = t.ensure_uint(32)
	ref = t.new_ref(u32, False)
	raw = t.new_raw_ptr(u32, True)

	def init(b):
		b.assign(b.ret(), M.Use(b.const(u32, 1)))
		b.set_terminator(M.Return())

	add_fn(program, "limit_init", [], u32, init)
	program.add_static(M.StaticDef("LIMIT", u32, "limit_init"))

	def body(b):
		p = b.new_local(raw, "p")
		b.assign(p, M.Cast(M.CastKind.PTR_TO_PTR, b.const(ref, M.StaticRef("LIMIT")), raw))
		b.assign(p.deref(), M.Use(b.const(u32, 2)))

	_main(program, t.ensure_unit(), body)
	[diag] = run_checked(program).diagnostics
	assert diag.code == "WRITE_TO_READONLY"


def test_bad_entry_points() -> None:
	program = M.Program()
	u32 = program.types.ensure_uint(32)
	add_fn(program, "takes_one", [u32], u32, lambda b: b.set_terminator(M.Return()))
	with pytest.raises(KeyError, match="main"):
		run_checked(program)
	with pytest.raises(ValueError, match="must take no arguments"):
		run_checked(program, "takes_one")


def _defect_program() -> M.Program:
	program = M.Program()
	usize = program.types.ensure_usize()
	broken = intrinsic(program, "min_align_of", [], usize)
	_main(program, usize, lambda b: emit_call(b, broken, [], b.ret()))
	return program


def test_internal_defect_propagates_by_default() -> None:
	with pytest.raises(InternalInvariantViolation):
		run_checked(_defect_program())


def test_internal_defect_isolated() -> None:
	result = run_checked(_defect_program(), config=MachineConfig(isolate_internal_errors=True))
	[diag] = result.diagnostics
	assert diag.code == "INTERNAL"
	assert "interpreter invariant violation" in diag.message


def test_internal_defect_unwinds_the_engine() -> None:
	program = M.Program()
	t = program.types
	u32 = t.ensure_uint(32)
	usize = t.ensure_usize()
	broken = intrinsic(program, "min_align_of", [], usize)

	def body(b):
		x = b.new_local(u32, "x")
		r = b.new_local(t.new_ref(u32, False), "r")
		n = b.new_local(usize, "n")
		b.assign(x, M.Use(b.const(u32, 1)))
		b.assign(r, M.Ref(x))
		emit_call(b, broken, [], n)

	_main(program, t.ensure_unit(), body)
	result = run_checked(program, config=MachineConfig(isolate_internal_errors=True))
	[diag] = result.diagnostics
	assert diag.code == "INTERNAL"
	assert (diag.span.function, diag.span.block, diag.span.index) == ("main", 0, 2)
	assert result.faulted
	assert result.ecx.stack == []
	assert [a for a, alloc in result.ecx.memory.live_allocations() if alloc.kind is MemoryKind.STACK] == []
