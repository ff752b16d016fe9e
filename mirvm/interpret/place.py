# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Places: where a value lives.

A place is either
  - LocalPlace(frame, local): a local of some frame whose value may still be
    held as an immediate (not yet given an address), or
  - MemPlace(ptr, align, meta): a memory location, with the metadata of an
    unsized place (slice length or vtable pointer) when there is one.

Locals are only given stack memory when something needs their address: a
projection, a reference, or a write of an aggregate (see
InterpCx.force_allocation).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional, Union

from mirvm.core.layout import Layout
from .pointer import Pointer
from .primval import PrimVal
from .value import ByVal, ByValPair, Value


@dataclass(frozen=True)
class MemPlace:
	ptr: Pointer
	align: int
	meta: Optional[PrimVal] = None  # slice length (usize) or vtable pointer

	def offset(self, delta: int, align: int, meta: Optional[PrimVal] = None) -> "MemPlace":
		"""Sub-place `delta` bytes in; `align` is the field's alignment."""
		return MemPlace(self.ptr.offset_by(delta), align, meta)

	def to_ref(self) -> Value:
		"""The (thin or fat) pointer value referring to this place."""
		data = PrimVal.from_ptr(self.ptr)
		if self.meta is None:
			return ByVal(data)
		return ByValPair(data, self.meta)

	def __str__(self) -> str:
		if self.meta is None:
			return f"*{self.ptr}"
		return f"*({self.ptr}, {self.meta})"


@dataclass(frozen=True)
class LocalPlace:
	frame: int  # index into the interpreter stack
	local: int

	def __str__(self) -> str:
		return f"frame{self.frame}._{self.local}"


AnyPlace = Union[LocalPlace, MemPlace]


@dataclass(frozen=True)
class PlaceTy:
	"""A place together with the layout of the value stored there."""

	place: AnyPlace
	layout: Layout
	variant: Optional[int] = None  # set by a Downcast projection

	@property
	def mplace(self) -> MemPlace:
		if not isinstance(self.place, MemPlace):
			raise AssertionError(f"place {self.place} has not been given an address (engine bug)")
		return self.place

	@property
	def is_local(self) -> bool:
		return isinstance(self.place, LocalPlace)

	def with_variant(self, variant: int) -> "PlaceTy":
		return replace(self, variant=variant)


__all__ = ["MemPlace", "LocalPlace", "AnyPlace", "PlaceTy"]
