# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Arithmetic, comparisons, pointer operators and casts."""

import math

import pytest

from mirvm.interpret.errors import FaultKind, InterpError
from mirvm.interpret.primval import PrimVal
from mirvm.interpret.value import ByVal, ByValPair
from mirvm.mir import mir_nodes as M
from mirvm.test_support import add_fn, new_ecx, run_fn


def _eval(program: M.Program, ret, rvalue_fn):
	"""Run `fn f() -> ret { _0 = rvalue_fn(builder) }` and return the value."""

	def body(b):
		b.assign(b.ret(), rvalue_fn(b))
		b.set_terminator(M.Return())

	add_fn(program, "f", [], ret, body)
	return run_fn(new_ecx(program), "f")


def _binop(op, ty_of, a, b, ret_of=None):
	program = M.Program()
	ty = ty_of(program.types)
	ret = ret_of(program.types) if ret_of is not None else ty
	return _eval(program, ret, lambda bld: M.BinaryOp(op, bld.const(ty, a), bld.const(ty, b)))


def test_add_wraps() -> None:
	value = _binop(M.BinOp.ADD, lambda t: t.ensure_uint(8), 200, 100)
	assert value == ByVal(PrimVal.from_uint(44, 1))


def test_checked_add_reports_overflow() -> None:
	program = M.Program()
	t = program.types
	u8 = t.ensure_uint(8)
	pair = t.new_tuple([u8, t.ensure_bool()])
	value = _eval(program, pair, lambda b: M.CheckedBinaryOp(M.BinOp.ADD, b.const(u8, 200), b.const(u8, 100)))
	assert value == ByValPair(PrimVal.from_uint(44, 1), PrimVal.from_bool(True))


def test_checked_sub_without_overflow() -> None:
	program = M.Program()
	t = program.types
	i16 = t.ensure_int(16)
	pair = t.new_tuple([i16, t.ensure_bool()])
	value = _eval(program, pair, lambda b: M.CheckedBinaryOp(M.BinOp.SUB, b.const(i16, -5), b.const(i16, 7)))
	assert value == ByValPair(PrimVal.from_int(-12, 2), PrimVal.from_bool(False))


def test_signed_division_truncates_toward_zero() -> None:
	assert _binop(M.BinOp.DIV, lambda t: t.ensure_int(32), -7, 2) == ByVal(PrimVal.from_int(-3, 4))
	assert _binop(M.BinOp.REM, lambda t: t.ensure_int(32), -7, 2) == ByVal(PrimVal.from_int(-1, 4))


def test_division_by_zero() -> None:
	with pytest.raises(InterpError, match="dividing by zero") as exc:
		_binop(M.BinOp.DIV, lambda t: t.ensure_uint(32), 1, 0)
	assert exc.value.kind is FaultKind.DIVISION_BY_ZERO


def test_signed_min_divided_by_minus_one() -> None:
	with pytest.raises(InterpError) as exc:
		_binop(M.BinOp.DIV, lambda t: t.ensure_int(8), -128, -1)
	assert exc.value.kind is FaultKind.OVERFLOW


def test_oversized_shift() -> None:
	with pytest.raises(InterpError) as exc:
		_binop(M.BinOp.SHL, lambda t: t.ensure_uint(32), 1, 32)
	assert exc.value.kind is FaultKind.INVALID_SHIFT


def test_arithmetic_shift_right() -> None:
	assert _binop(M.BinOp.SHR, lambda t: t.ensure_int(8), -16, 2) == ByVal(PrimVal.from_int(-4, 1))


def test_signed_comparison() -> None:
	value = _binop(M.BinOp.LT, lambda t: t.ensure_int(8), -1, 1, lambda t: t.ensure_bool())
	assert value == ByVal(PrimVal.from_bool(True))
	value = _binop(M.BinOp.LT, lambda t: t.ensure_uint(8), 255, 1, lambda t: t.ensure_bool())
	assert value == ByVal(PrimVal.from_bool(False))


def test_float_arithmetic() -> None:
	assert _binop(M.BinOp.MUL, lambda t: t.ensure_float(64), 1.5, 2.0) == ByVal(PrimVal.from_f64(3.0))
	value = _binop(M.BinOp.DIV, lambda t: t.ensure_float(64), 0.0, 0.0)
	assert isinstance(value, ByVal) and math.isnan(value.prim.to_float())


def test_unary_operators() -> None:
	program = M.Program()
	i32 = program.types.ensure_int(32)
	assert _eval(program, i32, lambda b: M.UnaryOp(M.UnOp.NEG, b.const(i32, 5))) == ByVal(PrimVal.from_int(-5, 4))
	program = M.Program()
	u8 = program.types.ensure_uint(8)
	assert _eval(program, u8, lambda b: M.UnaryOp(M.UnOp.NOT, b.const(u8, 0x0F))) == ByVal(PrimVal.from_uint(0xF0, 1))


@pytest.mark.parametrize(
	"src_of, value, dest_of, expected",
	[
		(lambda t: t.ensure_int(32), -1, lambda t: t.ensure_uint(8), PrimVal.from_uint(255, 1)),
		(lambda t: t.ensure_int(8), -1, lambda t: t.ensure_uint(64), PrimVal.from_uint((1 << 64) - 1, 8)),
		(lambda t: t.ensure_uint(8), 200, lambda t: t.ensure_int(64), PrimVal.from_int(200, 8)),
		(lambda t: t.ensure_float(64), 300.7, lambda t: t.ensure_uint(8), PrimVal.from_uint(255, 1)),
		(lambda t: t.ensure_float(64), -1e10, lambda t: t.ensure_int(32), PrimVal.from_int(-(1 << 31), 4)),
		(lambda t: t.ensure_float(64), math.nan, lambda t: t.ensure_int(32), PrimVal.from_int(0, 4)),
		(lambda t: t.ensure_uint(8), 65, lambda t: t.ensure_char(), PrimVal.from_char("A")),
		(lambda t: t.ensure_int(32), -3, lambda t: t.ensure_float(64), PrimVal.from_f64(-3.0)),
	],
)
def test_numeric_casts(src_of, value, dest_of, expected) -> None:
	program = M.Program()
	src = src_of(program.types)
	dest = dest_of(program.types)
	result = _eval(program, dest, lambda b: M.Cast(M.CastKind.NUMERIC, b.const(src, value), dest))
	assert result == ByVal(expected)


def test_size_of_nullary_op() -> None:
	program = M.Program()
	t = program.types
	s = t.new_struct("S", [("a", t.ensure_uint(8)), ("b", t.ensure_uint(64))])
	value = _eval(program, t.ensure_usize(), lambda b: M.NullaryOp(M.NullOp.SIZE_OF, s))
	assert value == ByVal(PrimVal.from_uint(16, 8))
	program = M.Program()
	t = program.types
	value = _eval(program, t.ensure_usize(), lambda b: M.NullaryOp(M.NullOp.ALIGN_OF, t.ensure_uint(32)))
	assert value == ByVal(PrimVal.from_uint(4, 8))


def _pointer_program(body_fn, ret_of):
	program = M.Program()
	t = program.types
	u32 = t.ensure_uint(32)
	raw = t.new_raw_ptr(u32, False)

	def body(b):
		body_fn(b, t, u32, raw)
		b.set_terminator(M.Return())

	add_fn(program, "f", [], ret_of(t), body)
	return run_fn(new_ecx(program), "f")


def test_pointer_to_address_keeps_provenance() -> None:
	def body(b, t, u32, raw):
		x = b.new_local(u32, "x")
		p = b.new_local(raw, "p")
		b.assign(x, M.Use(b.const(u32, 5)))
		b.assign(p, M.AddressOf(x))
		b.assign(b.ret(), M.Cast(M.CastKind.PTR_TO_ADDR, b.copy(p), t.ensure_usize()))

	value = _pointer_program(body, lambda t: t.ensure_usize())
	assert isinstance(value, ByVal)
	assert value.prim.is_ptr
	assert value.prim.ptr is not None and value.prim.ptr.has_provenance


def test_integer_address_cannot_be_dereferenced() -> None:
	def body(b, t, u32, raw):
		p = b.new_local(raw, "p")
		b.assign(p, M.Cast(M.CastKind.ADDR_TO_PTR, b.const(t.ensure_usize(), 0x1000), raw))
		b.assign(b.ret(), M.Use(b.copy(p.deref())))

	with pytest.raises(InterpError, match="without provenance") as exc:
		_pointer_program(body, lambda t: t.ensure_uint(32))
	assert exc.value.kind is FaultKind.DANGLING_POINTER


def test_pointers_into_different_allocations_compare_unequal() -> None:
	def body(b, t, u32, raw):
		x = b.new_local(u32, "x")
		y = b.new_local(u32, "y")
		px = b.new_local(raw, "px")
		py = b.new_local(raw, "py")
		b.assign(x, M.Use(b.const(u32, 1)))
		b.assign(y, M.Use(b.const(u32, 1)))
		b.assign(px, M.AddressOf(x))
		b.assign(py, M.AddressOf(y))
		b.assign(b.ret(), M.BinaryOp(M.BinOp.EQ, b.copy(px), b.copy(py)))

	assert _pointer_program(body, lambda t: t.ensure_bool()) == ByVal(PrimVal.from_bool(False))


def test_ordering_pointers_into_different_allocations() -> None:
	def body(b, t, u32, raw):
		x = b.new_local(u32, "x")
		y = b.new_local(u32, "y")
		px = b.new_local(raw, "px")
		py = b.new_local(raw, "py")
		b.assign(x, M.Use(b.const(u32, 1)))
		b.assign(y, M.Use(b.const(u32, 1)))
		b.assign(px, M.AddressOf(x))
		b.assign(py, M.AddressOf(y))
		b.assign(b.ret(), M.BinaryOp(M.BinOp.LT, b.copy(px), b.copy(py)))

	with pytest.raises(InterpError) as exc:
		_pointer_program(body, lambda t: t.ensure_bool())
	assert exc.value.kind is FaultKind.POINTER_ARITHMETIC


def test_pointer_offset_within_array() -> None:
	program = M.Program()
	t = program.types
	u16 = t.ensure_uint(16)
	arr = t.new_array(u16, 4)
	raw = t.new_raw_ptr(u16, False)

	def body(b):
		a = b.new_local(arr, "a")
		p = b.new_local(raw, "p")
		b.assign(a, M.Aggregate(M.AggregateKind.ARRAY, arr, tuple(b.const(u16, v) for v in (10, 20, 30, 40))))
		b.assign(p, M.AddressOf(a.project(M.ConstantIndex(0, 4))))
		b.assign(p, M.BinaryOp(M.BinOp.OFFSET, b.copy(p), b.const(t.ensure_usize(), 3)))
		b.assign(b.ret(), M.Use(b.copy(p.deref())))
		b.set_terminator(M.Return())

	add_fn(program, "f", [], u16, body)
	assert run_fn(new_ecx(program), "f") == ByVal(PrimVal.from_uint(40, 2))


def test_pointer_offset_past_the_end() -> None:
	program = M.Program()
	t = program.types
	u16 = t.ensure_uint(16)
	arr = t.new_array(u16, 2)
	raw = t.new_raw_ptr(u16, False)

	def body(b):
		a = b.new_local(arr, "a")
		p = b.new_local(raw, "p")
		b.assign(a, M.Repeat(b.const(u16, 0), 2))
		b.assign(p, M.AddressOf(a.project(M.ConstantIndex(0, 2))))
		b.assign(p, M.BinaryOp(M.BinOp.OFFSET, b.copy(p), b.const(t.ensure_usize(), 3)))
		b.assign(b.ret(), M.Use(b.const(u16, 0)))
		b.set_terminator(M.Return())

	add_fn(program, "f", [], u16, body)
	with pytest.raises(InterpError) as exc:
		run_fn(new_ecx(program), "f")
	assert exc.value.kind is FaultKind.POINTER_ARITHMETIC
