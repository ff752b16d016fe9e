# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Validity checking of values in memory and of immediates."""

import pytest

from mirvm.interpret.errors import FaultKind, InvalidValue
from mirvm.interpret.eval_context import InterpCx
from mirvm.interpret.memory import MemoryKind
from mirvm.interpret.operand import OpTy
from mirvm.interpret.place import MemPlace
from mirvm.interpret.pointer import Pointer
from mirvm.interpret.primval import PrimVal
from mirvm.interpret.validity import validate_operand
from mirvm.interpret.value import ByVal
from mirvm.mir import mir_nodes as M


def _setup():
	program = M.Program()
	return program.types, InterpCx(program)


def _check(ecx, ptr, ty, const_mode=False):
	layout = ecx.layout_of(ty)
	validate_operand(ecx, OpTy.indirect(MemPlace(ptr, layout.align), layout), const_mode=const_mode)


def _alloc(ecx, ty):
	layout = ecx.layout_of(ty)
	return ecx.memory.allocate(layout.size, layout.align, MemoryKind.HEAP)


def test_valid_struct_passes() -> None:
	t, ecx = _setup()
	s = t.new_struct("S", [("flag", t.ensure_bool()), ("n", t.ensure_uint(32))])
	p = _alloc(ecx, s)
	ecx.memory.write_uint(p, 1, 1)
	ecx.memory.write_uint(p.offset_by(4), 7, 4)
	_check(ecx, p, s)


def test_bool_out_of_range() -> None:
	t, ecx = _setup()
	boolean = t.ensure_bool()
	p = _alloc(ecx, boolean)
	ecx.memory.write_uint(p, 2, 1)
	with pytest.raises(InvalidValue, match="but expected a boolean") as exc:
		_check(ecx, p, boolean)
	assert exc.value.kind is FaultKind.INVALID_VALUE
	assert exc.value.phase == "validity"


def test_invalid_char() -> None:
	t, ecx = _setup()
	char = t.ensure_char()
	p = _alloc(ecx, char)
	ecx.memory.write_uint(p, 0xD800, 4)
	with pytest.raises(InvalidValue, match="unicode scalar value"):
		_check(ecx, p, char)


def test_uninitialized_field_names_path() -> None:
	t, ecx = _setup()
	s = t.new_struct("S", [("a", t.ensure_uint(8)), ("b", t.ensure_uint(32))])
	p = _alloc(ecx, s)
	ecx.memory.write_uint(p, 1, 1)
	with pytest.raises(InvalidValue, match="encountered uninitialized bytes at .b") as exc:
		_check(ecx, p, s)
	assert exc.value.path == ".b"


def test_array_element_path() -> None:
	t, ecx = _setup()
	arr = t.new_array(t.ensure_bool(), 3)
	p = _alloc(ecx, arr)
	ecx.memory.write_bytes(p, b"\x01\x00\x05")
	with pytest.raises(InvalidValue) as exc:
		_check(ecx, p, arr)
	assert exc.value.path == "[2]"


def test_null_reference() -> None:
	t, ecx = _setup()
	ref = t.new_ref(t.ensure_uint(32), False)
	p = _alloc(ecx, ref)
	ecx.memory.write_usize(p, 0)
	with pytest.raises(InvalidValue, match="encountered a null reference"):
		_check(ecx, p, ref)


def test_null_raw_pointer_is_fine() -> None:
	t, ecx = _setup()
	raw = t.new_raw_ptr(t.ensure_uint(32), False)
	p = _alloc(ecx, raw)
	ecx.memory.write_usize(p, 0)
	_check(ecx, p, raw)


def test_reference_to_freed_memory() -> None:
	t, ecx = _setup()
	u32 = t.ensure_uint(32)
	ref = t.new_ref(u32, False)
	p = _alloc(ecx, ref)
	target = _alloc(ecx, u32)
	ecx.memory.write_ptr(p, target)
	ecx.memory.deallocate(target, MemoryKind.HEAP)
	with pytest.raises(InvalidValue, match="use-after-free"):
		_check(ecx, p, ref)


def test_reference_beyond_allocation() -> None:
	t, ecx = _setup()
	ref = t.new_ref(t.ensure_uint(64), False)
	p = _alloc(ecx, ref)
	small = ecx.memory.allocate(4, 8, MemoryKind.HEAP)
	ecx.memory.write_ptr(p, small)
	with pytest.raises(InvalidValue, match="going beyond the bounds"):
		_check(ecx, p, ref)


def test_unaligned_reference() -> None:
	t, ecx = _setup()
	ref = t.new_ref(t.ensure_uint(32), False)
	p = _alloc(ecx, ref)
	target = ecx.memory.allocate(8, 4, MemoryKind.HEAP)
	ecx.memory.write_ptr(p, target.offset_by(2))
	with pytest.raises(InvalidValue, match="unaligned reference"):
		_check(ecx, p, ref)


def test_pointee_is_checked_with_deref_path() -> None:
	t, ecx = _setup()
	boolean = t.ensure_bool()
	holder = t.new_struct("Holder", [("r", t.new_ref(boolean, False))])
	p = _alloc(ecx, holder)
	target = _alloc(ecx, boolean)
	ecx.memory.write_uint(target, 3, 1)
	ecx.memory.write_ptr(p, target)
	with pytest.raises(InvalidValue) as exc:
		_check(ecx, p, holder)
	assert exc.value.path == ".r.<deref>"


def test_cyclic_references_terminate() -> None:
	t, ecx = _setup()
	node = t.declare_struct("Node")
	t.define_struct(node, [("value", t.ensure_uint(64)), ("next", t.new_ref(node, False))])
	p = _alloc(ecx, node)
	ecx.memory.write_uint(p, 1, 8)
	ecx.memory.write_ptr(p.offset_by(8), p)
	_check(ecx, p, node)


def test_invalid_enum_discriminant() -> None:
	t, ecx = _setup()
	color = t.new_enum("Color", [("Red", 0, []), ("Green", 1, []), ("Blue", 2, [])])
	p = _alloc(ecx, color)
	ecx.memory.write_uint(p, 7, 1)
	with pytest.raises(InvalidValue, match="encountered an invalid enum discriminant"):
		_check(ecx, p, color)


def test_pointer_in_integer_rejected_in_const_mode() -> None:
	t, ecx = _setup()
	u64 = t.ensure_uint(64)
	p = _alloc(ecx, u64)
	ecx.memory.write_ptr(p, _alloc(ecx, u64))
	_check(ecx, p, u64)
	with pytest.raises(InvalidValue, match="encountered a pointer, but expected plain integer bytes"):
		_check(ecx, p, u64, const_mode=True)


def test_partial_pointer_in_integer() -> None:
	t, ecx = _setup()
	u32 = t.ensure_uint(32)
	p = ecx.memory.allocate(8, 8, MemoryKind.HEAP)
	ecx.memory.write_ptr(p, _alloc(ecx, u32))
	with pytest.raises(InvalidValue, match="partial pointer"):
		_check(ecx, p, u32)


def test_trait_object_with_bogus_vtable() -> None:
	t, ecx = _setup()
	dyn_ref = t.new_ref(t.new_dyn("Show"), False)
	p = _alloc(ecx, dyn_ref)
	data = ecx.memory.allocate(4, 4, MemoryKind.HEAP)
	not_a_vtable = ecx.memory.allocate(24, 8, MemoryKind.HEAP)
	ecx.memory.write_ptr(p, data)
	ecx.memory.write_ptr(p.offset_by(8), not_a_vtable)
	with pytest.raises(InvalidValue, match="expected a vtable pointer"):
		_check(ecx, p, dyn_ref)


def test_slice_length_holding_a_pointer() -> None:
	t, ecx = _setup()
	slice_ref = t.new_ref(t.new_slice(t.ensure_uint(8)), False)
	p = _alloc(ecx, slice_ref)
	data = ecx.memory.allocate(4, 1, MemoryKind.HEAP)
	ecx.memory.write_ptr(p, data)
	ecx.memory.write_ptr(p.offset_by(8), data)
	with pytest.raises(InvalidValue, match="expected a slice length"):
		_check(ecx, p, slice_ref)


def test_immediate_is_spilled_and_checked() -> None:
	t, ecx = _setup()
	boolean = t.ensure_bool()
	layout = ecx.layout_of(boolean)
	validate_operand(ecx, OpTy.immediate(ByVal(PrimVal.from_bool(True)), layout))
	with pytest.raises(InvalidValue, match="expected a boolean"):
		validate_operand(ecx, OpTy.immediate(ByVal(PrimVal.from_uint(2, 1)), layout))
	kinds = [alloc.kind for _, alloc in ecx.memory.live_allocations()]
	assert MemoryKind.STACK not in kinds


def test_zero_sized_reference_without_provenance() -> None:
	t, ecx = _setup()
	ref = t.new_ref(t.ensure_unit(), False)
	p = _alloc(ecx, ref)
	ecx.memory.write_usize(p, 1)
	_check(ecx, p, ref)
	ecx.memory.write_ptr(p, Pointer.from_int(1))
	_check(ecx, p, ref)
