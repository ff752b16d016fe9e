# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Layout oracle: how a TypeId decomposes into bytes for a given target.

The interpreter never decides on its own whether a value is held in memory,
as one scalar, or as a scalar pair; it asks `LayoutCx.layout_of(ty)` and
follows `Layout.abi`:

  - Abi.SCALAR       -> the value is one primitive (Value.ByVal)
  - Abi.SCALAR_PAIR  -> two primitives (Value.ByValPair): fat pointers and
                        two-field tuples/structs such as `(u32, bool)`
  - Abi.AGGREGATE    -> the value lives in memory (Value.ByRef)
  - Abi.UNINHABITED  -> no value of the type can exist

Structs and tuples are laid out in declaration order (no field reordering).
Enums use a direct tag at offset 0 unless they match the nullable-pointer
shape (one fieldless variant plus one variant wrapping a single non-null
scalar), in which case the zero value of that scalar encodes the fieldless
variant.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Dict, Optional, Tuple

from .target import TargetSpec
from .types_core import TypeId, TypeKind, TypeTable


class Abi(Enum):
	SCALAR = auto()
	SCALAR_PAIR = auto()
	AGGREGATE = auto()
	UNINHABITED = auto()


class ScalarKind(Enum):
	INT = auto()
	FLOAT = auto()
	BOOL = auto()
	CHAR = auto()
	POINTER = auto()
	FN_POINTER = auto()


@dataclass(frozen=True)
class Scalar:
	"""One primitive leaf of a layout; `valid_range` is inclusive on raw bits."""

	kind: ScalarKind
	size: int
	signed: bool = False
	valid_range: Optional[Tuple[int, int]] = None

	@property
	def is_pointer(self) -> bool:
		return self.kind in (ScalarKind.POINTER, ScalarKind.FN_POINTER)

	@property
	def nonnull(self) -> bool:
		return self.valid_range is not None and self.valid_range[0] >= 1


@dataclass(frozen=True)
class FieldLayout:
	offset: int
	ty: TypeId


class TagEncoding(Enum):
	DIRECT = auto()  # tag bytes hold the discriminant
	NICHE = auto()  # zero in the dataful variant's scalar means `niche_variant`


@dataclass(frozen=True)
class TagLayout:
	offset: int
	scalar: Scalar
	encoding: TagEncoding = TagEncoding.DIRECT
	dataful_variant: Optional[int] = None  # NICHE only
	niche_variant: Optional[int] = None  # NICHE only


@dataclass(frozen=True)
class VariantLayout:
	name: str
	discr: int
	fields: Tuple[FieldLayout, ...]
	uninhabited: bool = False


@dataclass(frozen=True)
class Layout:
	"""Size, alignment and representation of one type."""

	ty: TypeId
	size: int
	align: int
	abi: Abi
	scalars: Tuple[Scalar, ...] = ()  # 1 entry for SCALAR, 2 for SCALAR_PAIR
	pair_offset: int = 0  # offset of the second scalar of a SCALAR_PAIR
	fields: Tuple[FieldLayout, ...] = ()
	variants: Tuple[VariantLayout, ...] = ()
	tag: Optional[TagLayout] = None
	elem: Optional[TypeId] = None  # arrays, slices, str
	count: Optional[int] = None  # arrays
	unsized: bool = False

	@property
	def is_zst(self) -> bool:
		return self.size == 0 and not self.unsized

	@property
	def scalar(self) -> Scalar:
		if self.abi is not Abi.SCALAR:
			raise AssertionError(f"layout of type {self.ty} is {self.abi.name}, not SCALAR (layout bug)")
		return self.scalars[0]

	def field_offset(self, index: int, variant: int | None = None) -> int:
		return self.field_layouts(variant)[index].offset

	def field_layouts(self, variant: int | None = None) -> Tuple[FieldLayout, ...]:
		if variant is None:
			return self.fields
		return self.variants[variant].fields


class LayoutError(ValueError):
	"""Raised when a type cannot be laid out (e.g. a recursive by-value struct)."""


def _align_to(offset: int, align: int) -> int:
	return (offset + align - 1) // align * align


class LayoutCx:
	"""Compute and cache layouts for TypeIds of one TypeTable on one target."""

	def __init__(self, types: TypeTable, target: TargetSpec) -> None:
		self.types = types
		self.target = target
		self._cache: Dict[TypeId, Layout] = {}
		self._in_progress: set[TypeId] = set()

	def layout_of(self, ty: TypeId) -> Layout:
		cached = self._cache.get(ty)
		if cached is not None:
			return cached
		if ty in self._in_progress:
			raise LayoutError(f"type {self.types.display(ty)} contains itself by value")
		self._in_progress.add(ty)
		try:
			layout = self._compute(ty)
		finally:
			self._in_progress.discard(ty)
		self._cache[ty] = layout
		return layout

	# Scalars

	def usize_scalar(self) -> Scalar:
		return Scalar(ScalarKind.INT, self.target.pointer_size, False)

	def _ptr_scalar(self, nonnull: bool, kind: ScalarKind = ScalarKind.POINTER) -> Scalar:
		ps = self.target.pointer_size
		return Scalar(kind, ps, False, (1, (1 << (ps * 8)) - 1) if nonnull else None)

	def _scalar_layout(self, ty: TypeId, scalar: Scalar, align: int) -> Layout:
		return Layout(ty=ty, size=scalar.size, align=align, abi=Abi.SCALAR, scalars=(scalar,))

	def _compute(self, ty: TypeId) -> Layout:
		td = self.types.get(ty)
		kind = td.kind
		ps = self.target.pointer_size
		if kind is TypeKind.BOOL:
			return self._scalar_layout(ty, Scalar(ScalarKind.BOOL, 1, False, (0, 1)), 1)
		if kind is TypeKind.CHAR:
			return self._scalar_layout(ty, Scalar(ScalarKind.CHAR, 4, False, (0, 0x10FFFF)), self.target.int_align(4))
		if kind in (TypeKind.INT, TypeKind.UINT):
			size = td.size if td.size is not None else ps
			return self._scalar_layout(ty, Scalar(ScalarKind.INT, size, kind is TypeKind.INT), self.target.int_align(size))
		if kind is TypeKind.FLOAT:
			assert td.size is not None
			return self._scalar_layout(ty, Scalar(ScalarKind.FLOAT, td.size, True), self.target.float_align(td.size))
		if kind in (TypeKind.UNIT, TypeKind.FN_DEF):
			return Layout(ty=ty, size=0, align=1, abi=Abi.AGGREGATE)
		if kind is TypeKind.NEVER:
			return Layout(ty=ty, size=0, align=1, abi=Abi.UNINHABITED)
		if kind in (TypeKind.REF, TypeKind.RAW_PTR):
			return self._pointer_layout(ty, td.param_types[0], nonnull=kind is TypeKind.REF)
		if kind is TypeKind.FN_PTR:
			return self._scalar_layout(ty, self._ptr_scalar(True, ScalarKind.FN_POINTER), self.target.pointer_align)
		if kind is TypeKind.ARRAY:
			elem = self.layout_of(td.param_types[0])
			count = td.length or 0
			abi = Abi.UNINHABITED if elem.abi is Abi.UNINHABITED and count > 0 else Abi.AGGREGATE
			return Layout(ty=ty, size=elem.size * count, align=elem.align, abi=abi, elem=td.param_types[0], count=count)
		if kind is TypeKind.SLICE:
			elem = self.layout_of(td.param_types[0])
			return Layout(ty=ty, size=0, align=elem.align, abi=Abi.AGGREGATE, elem=td.param_types[0], unsized=True)
		if kind is TypeKind.STR:
			return Layout(ty=ty, size=0, align=1, abi=Abi.AGGREGATE, elem=self.types.ensure_uint(8), unsized=True)
		if kind is TypeKind.DYN:
			return Layout(ty=ty, size=0, align=1, abi=Abi.AGGREGATE, unsized=True)
		if kind in (TypeKind.TUPLE, TypeKind.STRUCT):
			return self._univariant(ty, td.param_types)
		if kind is TypeKind.ENUM:
			return self._enum_layout(ty)
		raise LayoutError(f"no layout for type kind {kind.name}")

	def _pointer_layout(self, ty: TypeId, pointee: TypeId, nonnull: bool) -> Layout:
		ps = self.target.pointer_size
		data = self._ptr_scalar(nonnull)
		if not self.types.is_unsized(pointee):
			return self._scalar_layout(ty, data, self.target.pointer_align)
		tail = self.types.get(self.types.unsized_tail(pointee))
		if tail.kind is TypeKind.DYN:
			meta = self._ptr_scalar(True)
		else:
			meta = self.usize_scalar()
		return Layout(
			ty=ty,
			size=2 * ps,
			align=self.target.pointer_align,
			abi=Abi.SCALAR_PAIR,
			scalars=(data, meta),
			pair_offset=ps,
		)

	def _univariant(self, ty: TypeId, field_types: Tuple[TypeId, ...], start: int = 0) -> Layout:
		offset = start
		align = 1
		fields = []
		field_layouts = []
		uninhabited = False
		unsized = False
		for idx, fty in enumerate(field_types):
			fl = self.layout_of(fty)
			if fl.unsized and idx != len(field_types) - 1:
				raise LayoutError(f"unsized field in non-tail position of {self.types.display(ty)}")
			offset = _align_to(offset, fl.align)
			fields.append(FieldLayout(offset, fty))
			field_layouts.append(fl)
			offset += fl.size
			align = max(align, fl.align)
			uninhabited = uninhabited or fl.abi is Abi.UNINHABITED
			unsized = unsized or fl.unsized
		size = offset if unsized else _align_to(offset, align)
		abi = Abi.UNINHABITED if uninhabited else Abi.AGGREGATE
		scalars: Tuple[Scalar, ...] = ()
		pair_offset = 0
		if abi is Abi.AGGREGATE and not unsized and start == 0:
			non_zst = [(f, fl) for f, fl in zip(fields, field_layouts) if fl.size != 0]
			if len(non_zst) == 1 and non_zst[0][1].abi is Abi.SCALAR and non_zst[0][0].offset == 0 and non_zst[0][1].size == size:
				abi = Abi.SCALAR
				scalars = non_zst[0][1].scalars
			elif (
				len(non_zst) == 2
				and all(fl.abi is Abi.SCALAR for _, fl in non_zst)
				and non_zst[0][0].offset == 0
			):
				abi = Abi.SCALAR_PAIR
				scalars = (non_zst[0][1].scalar, non_zst[1][1].scalar)
				pair_offset = non_zst[1][0].offset
		return Layout(
			ty=ty,
			size=size,
			align=align,
			abi=abi,
			scalars=scalars,
			pair_offset=pair_offset,
			fields=tuple(fields),
			unsized=unsized,
		)

	def _tag_scalar(self, lo: int, hi: int) -> Scalar:
		signed = lo < 0
		for size in (1, 2, 4, 8):
			bits = size * 8
			if signed:
				if -(1 << (bits - 1)) <= lo and hi < (1 << (bits - 1)):
					return Scalar(ScalarKind.INT, size, True)
			elif hi < (1 << bits):
				return Scalar(ScalarKind.INT, size, False)
		raise LayoutError(f"discriminant range {lo}..{hi} does not fit 64 bits")

	def _enum_layout(self, ty: TypeId) -> Layout:
		td = self.types.get(ty)
		if not td.variants:
			return Layout(ty=ty, size=0, align=1, abi=Abi.UNINHABITED)
		discrs = [v.discr for v in td.variants]
		tag_scalar = self._tag_scalar(min(discrs), max(discrs))
		if all(not v.field_types for v in td.variants):
			tag = TagLayout(0, tag_scalar)
			variants = tuple(VariantLayout(v.name, v.discr, ()) for v in td.variants)
			return Layout(
				ty=ty,
				size=tag_scalar.size,
				align=self.target.int_align(tag_scalar.size),
				abi=Abi.SCALAR,
				scalars=(tag_scalar,),
				variants=variants,
				tag=tag,
			)
		niche = self._niche_layout(ty)
		if niche is not None:
			return niche
		tag_align = self.target.int_align(tag_scalar.size)
		size = tag_scalar.size
		align = tag_align
		variants = []
		for v in td.variants:
			vl = self._univariant(ty, v.field_types, start=tag_scalar.size)
			variants.append(VariantLayout(v.name, v.discr, vl.fields, uninhabited=vl.abi is Abi.UNINHABITED))
			size = max(size, vl.size)
			align = max(align, vl.align)
		all_uninhabited = all(v.uninhabited for v in variants)
		return Layout(
			ty=ty,
			size=_align_to(size, align),
			align=align,
			abi=Abi.UNINHABITED if all_uninhabited else Abi.AGGREGATE,
			variants=tuple(variants),
			tag=TagLayout(0, tag_scalar),
		)

	def _niche_layout(self, ty: TypeId) -> Optional[Layout]:
		td = self.types.get(ty)
		if len(td.variants) != 2:
			return None
		empty = [i for i, v in enumerate(td.variants) if not v.field_types]
		dataful = [i for i, v in enumerate(td.variants) if len(v.field_types) == 1]
		if len(empty) != 1 or len(dataful) != 1:
			return None
		field_ty = td.variants[dataful[0]].field_types[0]
		inner = self.layout_of(field_ty)
		if inner.abi is not Abi.SCALAR or not inner.scalar.nonnull:
			return None
		carrier = replace(inner.scalar, valid_range=None)
		variants = []
		for idx, v in enumerate(td.variants):
			fields = (FieldLayout(0, field_ty),) if idx == dataful[0] else ()
			variants.append(VariantLayout(v.name, v.discr, fields))
		return Layout(
			ty=ty,
			size=inner.size,
			align=inner.align,
			abi=Abi.SCALAR,
			scalars=(carrier,),
			variants=tuple(variants),
			tag=TagLayout(
				0,
				inner.scalar,
				TagEncoding.NICHE,
				dataful_variant=dataful[0],
				niche_variant=empty[0],
			),
		)


__all__ = [
	"Abi",
	"ScalarKind",
	"Scalar",
	"FieldLayout",
	"TagEncoding",
	"TagLayout",
	"VariantLayout",
	"Layout",
	"LayoutCx",
	"LayoutError",
]
