# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Layout oracle: sizes, field offsets and value representations."""

import pytest

from mirvm.core.layout import Abi, LayoutCx, LayoutError, ScalarKind, TagEncoding
from mirvm.core.target import TargetSpec
from mirvm.core.types_core import TypeTable


def _cx(bits: int = 64) -> LayoutCx:
	return LayoutCx(TypeTable(), TargetSpec.for_word_bits(bits))


def test_scalar_layouts() -> None:
	cx = _cx()
	t = cx.types
	assert cx.layout_of(t.ensure_bool()).size == 1
	assert cx.layout_of(t.ensure_char()).size == 4
	assert cx.layout_of(t.ensure_usize()).size == 8
	u16 = cx.layout_of(t.ensure_uint(16))
	assert u16.abi is Abi.SCALAR
	assert u16.scalar.kind is ScalarKind.INT
	assert not u16.scalar.signed


def test_usize_follows_target() -> None:
	cx = _cx(32)
	assert cx.layout_of(cx.types.ensure_usize()).size == 4
	isize = cx.layout_of(cx.types.ensure_isize())
	assert isize.size == 4
	assert isize.scalar.signed
	assert cx.types.is_integral(cx.types.ensure_isize())
	assert cx.layout_of(cx.types.new_ref(cx.types.ensure_uint(8), False)).size == 4


def test_unit_and_never() -> None:
	cx = _cx()
	assert cx.layout_of(cx.types.ensure_unit()).is_zst
	assert cx.layout_of(cx.types.ensure_never()).abi is Abi.UNINHABITED


def test_struct_fields_in_declaration_order() -> None:
	cx = _cx()
	t = cx.types
	s = t.new_struct("S", [("a", t.ensure_uint(8)), ("b", t.ensure_uint(32)), ("c", t.ensure_uint(16))])
	layout = cx.layout_of(s)
	assert [f.offset for f in layout.fields] == [0, 4, 8]
	assert layout.size == 12
	assert layout.align == 4
	assert layout.abi is Abi.AGGREGATE


def test_single_scalar_struct_is_scalar() -> None:
	cx = _cx()
	t = cx.types
	s = t.new_struct("Wrapper", [("v", t.ensure_uint(32)), ("z", t.ensure_unit())])
	assert cx.layout_of(s).abi is Abi.SCALAR


def test_two_scalar_tuple_is_pair() -> None:
	cx = _cx()
	t = cx.types
	layout = cx.layout_of(t.new_tuple([t.ensure_uint(32), t.ensure_bool()]))
	assert layout.abi is Abi.SCALAR_PAIR
	assert layout.pair_offset == 4
	assert layout.size == 8


def test_fat_pointers() -> None:
	cx = _cx()
	t = cx.types
	slice_ref = cx.layout_of(t.new_ref(t.new_slice(t.ensure_uint(16)), False))
	assert slice_ref.abi is Abi.SCALAR_PAIR
	assert slice_ref.size == 16
	assert slice_ref.scalars[1].kind is ScalarKind.INT
	dyn_ref = cx.layout_of(t.new_ref(t.new_dyn("Show"), False))
	assert dyn_ref.scalars[1].kind is ScalarKind.POINTER


def test_fieldless_enum_direct_tag() -> None:
	cx = _cx()
	t = cx.types
	e = t.new_enum("Color", [("Red", 0, []), ("Green", 1, []), ("Blue", 300, [])])
	layout = cx.layout_of(e)
	assert layout.abi is Abi.SCALAR
	assert layout.size == 2
	assert layout.tag is not None and layout.tag.encoding is TagEncoding.DIRECT


def test_option_like_enum_uses_niche() -> None:
	cx = _cx()
	t = cx.types
	r = t.new_ref(t.ensure_uint(32), False)
	opt = t.new_enum("OptRef", [("None", 0, []), ("Some", 1, [r])])
	layout = cx.layout_of(opt)
	assert layout.size == 8
	assert layout.tag is not None
	assert layout.tag.encoding is TagEncoding.NICHE
	assert layout.tag.niche_variant == 0
	assert layout.tag.dataful_variant == 1


def test_tagged_enum_fields_follow_tag() -> None:
	cx = _cx()
	t = cx.types
	e = t.new_enum("Shape", [("Dot", 0, []), ("Line", 1, [t.ensure_uint(32), t.ensure_uint(32)])])
	layout = cx.layout_of(e)
	assert layout.abi is Abi.AGGREGATE
	assert layout.field_offset(0, 1) == 4
	assert layout.field_offset(1, 1) == 8
	assert layout.size == 12


def test_recursive_by_value_type_rejected() -> None:
	cx = _cx()
	t = cx.types
	s = t.declare_struct("Loop")
	t.define_struct(s, [("inner", s)])
	with pytest.raises(LayoutError, match="contains itself"):
		cx.layout_of(s)


def test_self_reference_through_pointer() -> None:
	cx = _cx()
	t = cx.types
	node = t.declare_struct("Node")
	t.define_struct(node, [("value", t.ensure_uint(64)), ("next", t.new_raw_ptr(node, False))])
	layout = cx.layout_of(node)
	assert layout.size == 16
	assert layout.abi is Abi.SCALAR_PAIR
