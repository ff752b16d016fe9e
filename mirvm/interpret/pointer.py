# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Abstract pointers: an allocation id plus a byte offset.

Allocation id NO_ALLOC marks an integer address without provenance (null,
or an address produced by an int-to-pointer cast); such a pointer can be
compared and offset, but never dereferenced.
"""

from __future__ import annotations

from dataclasses import dataclass


AllocId = int

NO_ALLOC: AllocId = 0


@dataclass(frozen=True)
class Pointer:
	alloc_id: AllocId
	offset: int

	@classmethod
	def from_int(cls, addr: int) -> "Pointer":
		return cls(NO_ALLOC, addr)

	@classmethod
	def null(cls) -> "Pointer":
		return cls(NO_ALLOC, 0)

	@property
	def has_provenance(self) -> bool:
		return self.alloc_id != NO_ALLOC

	@property
	def is_null(self) -> bool:
		return self.alloc_id == NO_ALLOC and self.offset == 0

	def offset_by(self, delta: int) -> "Pointer":
		"""Pointer `delta` bytes further; bounds are checked on access, not here."""
		return Pointer(self.alloc_id, self.offset + delta)

	def __str__(self) -> str:
		if not self.has_provenance:
			return f"{self.offset:#x}"
		return f"alloc{self.alloc_id}+{self.offset:#x}"


__all__ = ["AllocId", "NO_ALLOC", "Pointer"]
