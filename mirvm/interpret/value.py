# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Value: one logical value in one of three physical representations.

  - ByRef(ptr)        the value lives in memory at `ptr`;
  - ByVal(prim)       one scalar held directly;
  - ByValPair(a, b)   two scalars held directly (fat pointers, small pairs).

Which representation a value of a given type uses is decided by the layout
oracle; this module only answers "interpret this as X" requests. Every
request a representation cannot satisfy is an engine defect and raises
InternalInvariantViolation; the branches are spelled out one by one so each
violation names the representation that was wrong.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import bug
from .memory import Memory
from .pointer import Pointer
from .primval import PrimVal


class Value:
	"""Base class of the three value representations."""

	def read_ptr(self, mem: Memory) -> Pointer:
		"""Pointer held by (or stored at) this value."""
		raise NotImplementedError

	def read_uint(self, mem: Memory, size: int) -> int:
		"""Unsigned integer of `size` bytes held by (or stored at) this value."""
		raise NotImplementedError

	def to_pointer_address(self) -> Pointer:
		"""Address of a value already materialized in memory."""
		raise NotImplementedError

	def expect_vtable(self, mem: Memory) -> Pointer:
		"""Vtable half of a trait-object fat pointer."""
		raise NotImplementedError

	def expect_slice_length(self, mem: Memory) -> int:
		"""Length half of a slice/str fat pointer."""
		raise NotImplementedError


@dataclass(frozen=True)
class ByRef(Value):
	ptr: Pointer

	def read_ptr(self, mem: Memory) -> Pointer:
		return mem.read_ptr(self.ptr)

	def read_uint(self, mem: Memory, size: int) -> int:
		return mem.read_uint(self.ptr, size)

	def to_pointer_address(self) -> Pointer:
		return self.ptr

	def expect_vtable(self, mem: Memory) -> Pointer:
		return mem.read_ptr(self.ptr.offset_by(mem.pointer_size()))

	def expect_slice_length(self, mem: Memory) -> int:
		return mem.read_usize(self.ptr.offset_by(mem.pointer_size()))

	def __str__(self) -> str:
		return f"ByRef({self.ptr})"


@dataclass(frozen=True)
class ByVal(Value):
	prim: PrimVal

	def read_ptr(self, mem: Memory) -> Pointer:
		if self.prim.is_undef:
			return self.prim.to_ptr()  # faults with UNINIT_READ
		if self.prim.is_ptr:
			assert self.prim.ptr is not None
			return self.prim.ptr
		bug(f"read_ptr on ByVal({self.prim}), which does not hold a pointer")

	def read_uint(self, mem: Memory, size: int) -> int:
		if self.prim.is_undef:
			return self.prim.to_u64()  # faults with UNINIT_READ
		if not self.prim.kind.is_unsigned_int:
			bug(f"read_uint on ByVal({self.prim}), which does not hold an unsigned integer")
		if self.prim.kind.size > size:
			bug(f"read_uint of {size} bytes on the wider ByVal({self.prim})")
		return self.prim.bits

	def to_pointer_address(self) -> Pointer:
		bug(f"to_pointer_address on ByVal({self.prim}); only ByRef values have an address")

	def expect_vtable(self, mem: Memory) -> Pointer:
		bug(f"expect_vtable on ByVal({self.prim}); a trait object is a pair")

	def expect_slice_length(self, mem: Memory) -> int:
		bug(f"expect_slice_length on ByVal({self.prim}); a slice pointer is a pair")

	def __str__(self) -> str:
		return f"ByVal({self.prim})"


@dataclass(frozen=True)
class ByValPair(Value):
	a: PrimVal
	b: PrimVal

	def read_ptr(self, mem: Memory) -> Pointer:
		bug(f"read_ptr on ByValPair({self.a}, {self.b}); use the data half of the pair")

	def read_uint(self, mem: Memory, size: int) -> int:
		bug(f"read_uint on ByValPair({self.a}, {self.b})")

	def to_pointer_address(self) -> Pointer:
		bug(f"to_pointer_address on ByValPair({self.a}, {self.b}); only ByRef values have an address")

	def expect_vtable(self, mem: Memory) -> Pointer:
		if self.b.is_undef:
			return self.b.to_ptr()  # faults with UNINIT_READ
		if self.b.is_ptr:
			assert self.b.ptr is not None
			return self.b.ptr
		bug(f"expect_vtable on ByValPair({self.a}, {self.b}), whose second half is not a pointer")

	def expect_slice_length(self, mem: Memory) -> int:
		if self.b.is_undef:
			return self.b.to_u64()  # faults with UNINIT_READ
		if self.b.kind.is_unsigned_int:
			return self.b.bits
		bug(f"expect_slice_length on ByValPair({self.a}, {self.b}), whose second half is not an unsigned integer")

	def __str__(self) -> str:
		return f"ByValPair({self.a}, {self.b})"


__all__ = ["Value", "ByRef", "ByVal", "ByValPair"]
