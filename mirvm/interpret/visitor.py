# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Layout-directed walk over a value in memory.

ValueVisitor descends into the fields of structs and tuples, the elements
of arrays and slices, and the fields of the active variant of an enum.
Subclasses decide what happens at each sub-value by overriding
`visit_value` and call `walk_value` to descend. Every sub-value carries a
path such as `.inner.0[3]` for error reporting.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mirvm.core.layout import Layout
from mirvm.core.types_core import TypeKind
from .errors import bug
from .operand import OpTy
from .place import MemPlace

if TYPE_CHECKING:
	from .eval_context import InterpCx


class ValueVisitor:
	def __init__(self, ecx: "InterpCx") -> None:
		self.ecx = ecx

	def visit_value(self, mp: MemPlace, layout: Layout, path: str) -> None:
		self.walk_value(mp, layout, path)

	def read_variant(self, mp: MemPlace, layout: Layout, path: str) -> int:
		"""Index of the active variant of the enum at `mp`."""
		_, idx = self.ecx.read_discriminant(OpTy.indirect(mp, layout))
		return idx

	def walk_value(self, mp: MemPlace, layout: Layout, path: str) -> None:
		ecx = self.ecx
		types = ecx.types
		td = types.get(layout.ty)
		kind = td.kind
		if kind in (TypeKind.ARRAY, TypeKind.SLICE):
			assert layout.elem is not None
			elem = ecx.layout_of(layout.elem)
			if elem.is_zst:
				return
			count = layout.count if layout.count is not None else (mp.meta.to_u64() if mp.meta is not None else 0)
			for i in range(count):
				self.visit_value(mp.offset(i * elem.size, elem.align), elem, f"{path}[{i}]")
		elif kind in (TypeKind.TUPLE, TypeKind.STRUCT):
			field_tys = types.field_types(layout.ty)
			for i, fl in enumerate(layout.fields):
				name = td.field_names[i] if kind is TypeKind.STRUCT else str(i)
				field_layout = ecx.layout_of(field_tys[i])
				meta = mp.meta if field_layout.unsized else None
				self.visit_value(mp.offset(fl.offset, field_layout.align, meta), field_layout, f"{path}.{name}")
		elif kind is TypeKind.ENUM:
			idx = self.read_variant(mp, layout, path)
			variant = td.variants[idx]
			for i, fl in enumerate(layout.field_layouts(idx)):
				field_layout = ecx.layout_of(variant.field_types[i])
				sub = mp.offset(fl.offset, field_layout.align)
				self.visit_value(sub, field_layout, f"{path}.<enum-variant({variant.name})>.{i}")
		else:
			bug(f"{td.name} has no fields to walk")


__all__ = ["ValueVisitor"]
