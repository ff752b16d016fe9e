# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Trait objects: vtable layout, virtual calls and drops."""

import pytest

from mirvm.core.types_core import FnSig
from mirvm.interpret.errors import FaultKind, InterpError
from mirvm.interpret.memory import MemoryKind
from mirvm.interpret.primval import PrimVal
from mirvm.interpret.traits import VTABLE_HEADER_WORDS, get_vtable, get_vtable_method, read_drop_fn, read_size_and_align
from mirvm.interpret.value import ByVal
from mirvm.mir import mir_nodes as M
from mirvm.test_support import add_fn, emit_call, new_ecx, run_fn


def _counter_program(method_ret_of=None):
	"""`struct Counter { n: u32 }` implementing `trait Get { fn get(&self) -> u32; fn bump(&self, u32) -> u32 }`."""
	program = M.Program()
	t = program.types
	u32 = t.ensure_uint(32)
	counter = t.new_struct("Counter", [("n", u32)], drop_fn="drop_counter")
	dyn_get = t.new_dyn("Get")
	self_ref = t.new_ref(dyn_get, False)
	program.add_trait(
		M.TraitDef("Get", (("get", FnSig((self_ref,), u32)), ("bump", FnSig((self_ref, u32), u32))))
	)
	counter_ref = t.new_ref(counter, False)
	get_ret = method_ret_of(t) if method_ret_of is not None else u32

	def get(b):
		b.assign(b.ret(), M.Use(b.copy(b.arg(0).deref().field(0, u32))))
		b.set_terminator(M.Return())

	def bump(b):
		b.assign(b.ret(), M.BinaryOp(M.BinOp.ADD, b.copy(b.arg(0).deref().field(0, u32)), b.copy(b.arg(1))))
		b.set_terminator(M.Return())

	def drop_counter(b):
		b.assign(b.arg(0).deref().field(0, u32), M.Use(b.const(u32, 99)))
		b.set_terminator(M.Return())

	def wrong(b):
		b.set_terminator(M.Return())

	add_fn(program, "Counter_get", [counter_ref], get_ret, get if get_ret == u32 else wrong)
	add_fn(program, "Counter_bump", [counter_ref, u32], u32, bump)
	add_fn(program, "drop_counter", [t.new_ref(counter, True)], t.ensure_unit(), drop_counter)
	program.add_impl(M.ImplDef("Get", counter, ("Counter_get", "Counter_bump")))
	return program, counter, self_ref, u32


def test_vtable_layout() -> None:
	program, counter, _, _ = _counter_program()
	ecx = new_ecx(program)
	vtable = get_vtable(ecx, counter, "Get")
	assert get_vtable(ecx, counter, "Get") == vtable
	assert ecx.memory.kind_of(vtable.alloc_id) is MemoryKind.VTABLE
	assert ecx.memory.get(vtable.alloc_id).size == (VTABLE_HEADER_WORDS + 2) * 8
	assert read_size_and_align(ecx, vtable) == (4, 4)
	assert read_drop_fn(ecx, vtable) == "drop_counter"
	assert get_vtable_method(ecx, vtable, "Get", 1) == "Counter_bump"


def test_vtable_is_read_only() -> None:
	program, counter, _, _ = _counter_program()
	ecx = new_ecx(program)
	vtable = get_vtable(ecx, counter, "Get")
	with pytest.raises(InterpError) as exc:
		ecx.memory.write_usize(vtable.offset_by(8), 1)
	assert exc.value.kind is FaultKind.WRITE_TO_READONLY


def test_pointer_that_is_not_a_vtable() -> None:
	program, counter, _, _ = _counter_program()
	ecx = new_ecx(program)
	bogus = ecx.memory.allocate(40, 8, MemoryKind.HEAP)
	with pytest.raises(InterpError, match="not a vtable pointer") as exc:
		read_size_and_align(ecx, bogus)
	assert exc.value.kind is FaultKind.INVALID_VALUE


def _main_calling(program, counter, self_ref, u32, method, extra_args):
	t = program.types

	def main(b):
		c = b.new_local(counter, "c")
		r = b.new_local(t.new_ref(counter, False), "r")
		d = b.new_local(self_ref, "d")
		b.assign(c, M.Aggregate(M.AggregateKind.ADT, counter, (b.const(u32, 41),)))
		b.assign(r, M.Ref(c))
		b.assign(d, M.Cast(M.CastKind.UNSIZE, b.copy(r), self_ref))
		args = [b.copy(d)] + [b.const(u32, v) for v in extra_args]
		emit_call(b, M.Virtual("Get", method), args, b.ret())
		b.set_terminator(M.Return())

	add_fn(program, "main", [], u32, main)


def test_virtual_call_dispatches_through_vtable() -> None:
	program, counter, self_ref, u32 = _counter_program()
	_main_calling(program, counter, self_ref, u32, 0, [])
	assert run_fn(new_ecx(program), "main") == ByVal(PrimVal.from_uint(41, 4))


def test_virtual_call_with_extra_argument() -> None:
	program, counter, self_ref, u32 = _counter_program()
	_main_calling(program, counter, self_ref, u32, 1, [1])
	assert run_fn(new_ecx(program), "main") == ByVal(PrimVal.from_uint(42, 4))


def test_vtable_entry_with_wrong_signature() -> None:
	program, counter, self_ref, u32 = _counter_program(lambda t: t.ensure_unit())
	_main_calling(program, counter, self_ref, u32, 0, [])
	with pytest.raises(InterpError, match="vtable entry Counter_get") as exc:
		run_fn(new_ecx(program), "main")
	assert exc.value.kind is FaultKind.SIGNATURE_MISMATCH


def test_vtable_of_another_trait() -> None:
	program, counter, self_ref, u32 = _counter_program()
	t = program.types
	program.add_trait(M.TraitDef("Other", (("get", FnSig((t.new_ref(t.new_dyn("Other"), False),), u32)),)))
	_main_calling(program, counter, self_ref, u32, 0, [])
	main = program.functions["main"]
	call = main.blocks[0].terminator
	main.blocks[0].terminator = M.Call(M.Virtual("Other", 0), call.args, call.destination, call.target)
	with pytest.raises(InterpError, match="vtable for Get") as exc:
		run_fn(new_ecx(program), "main")
	assert exc.value.kind is FaultKind.SIGNATURE_MISMATCH


def test_drop_runs_drop_function() -> None:
	program, counter, _, u32 = _counter_program()

	def main(b):
		c = b.new_local(counter, "c")
		b.assign(c, M.Aggregate(M.AggregateKind.ADT, counter, (b.const(u32, 1),)))
		nxt = b.new_block()
		b.set_terminator(M.Drop(c, nxt))
		b.set_block(nxt)
		b.assign(b.ret(), M.Use(b.copy(c.field(0, u32))))
		b.set_terminator(M.Return())

	add_fn(program, "main", [], u32, main)
	assert run_fn(new_ecx(program), "main") == ByVal(PrimVal.from_uint(99, 4))


def test_drop_of_trait_object_uses_vtable() -> None:
	program, counter, self_ref, u32 = _counter_program()
	t = program.types

	def main(b):
		c = b.new_local(counter, "c")
		r = b.new_local(t.new_ref(counter, False), "r")
		d = b.new_local(self_ref, "d")
		b.assign(c, M.Aggregate(M.AggregateKind.ADT, counter, (b.const(u32, 1),)))
		b.assign(r, M.Ref(c))
		b.assign(d, M.Cast(M.CastKind.UNSIZE, b.copy(r), self_ref))
		nxt = b.new_block()
		b.set_terminator(M.Drop(d.deref(), nxt))
		b.set_block(nxt)
		b.assign(b.ret(), M.Use(b.copy(c.field(0, u32))))
		b.set_terminator(M.Return())

	add_fn(program, "main", [], u32, main)
	assert run_fn(new_ecx(program), "main") == ByVal(PrimVal.from_uint(99, 4))


def test_drop_of_plain_value_is_a_jump() -> None:
	program = M.Program()
	u32 = program.types.ensure_uint(32)

	def main(b):
		x = b.new_local(u32, "x")
		b.assign(x, M.Use(b.const(u32, 3)))
		nxt = b.new_block()
		b.set_terminator(M.Drop(x, nxt))
		b.set_block(nxt)
		b.assign(b.ret(), M.Use(b.copy(x)))
		b.set_terminator(M.Return())

	add_fn(program, "main", [], u32, main)
	assert run_fn(new_ecx(program), "main") == ByVal(PrimVal.from_uint(3, 4))
