# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Memory subsystem: allocations, byte access and pointer provenance.

Every allocation is an owned byte buffer plus:
  - a per-byte init mask (uninitialized bytes are tracked individually),
  - a relocation map `offset -> AllocId` recording where pointers are
    stored, so a pointer written to memory and read back keeps its
    provenance,
  - its alignment, mutability and MemoryKind.

Allocation ids come from a strictly increasing counter and are never
reused; freed ids are remembered so a stale pointer is reported as
dangling instead of aliasing a newer allocation.

Strict vs lenient reads:
  - read_bytes / read_uint / read_ptr require initialized bytes and the
    right kind of content (bytes vs pointer) and fault otherwise;
  - read_primval / read_ptr_sized are used when loading a typed value into
    an immediate: uninitialized bytes produce PrimVal.undef() and faults
    are deferred to the point of use.
"""

from __future__ import annotations

import itertools
import logging
import struct
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from mirvm.core.layout import Scalar, ScalarKind
from mirvm.core.target import TargetSpec
from .errors import FaultKind, bug, ub
from .pointer import NO_ALLOC, AllocId, Pointer
from .primval import PrimVal, PrimValKind, int_kind, truncate


logger = logging.getLogger(__name__)


class MemoryKind(Enum):
	STACK = auto()  # locals of a frame, freed on pop
	HEAP = auto()  # heap_alloc intrinsic, freed explicitly
	VTABLE = auto()  # read-only vtables
	GLOBAL = auto()  # interned constants/statics and literals
	FN = auto()  # zero-sized stand-ins for function pointers


@dataclass
class Allocation:
	data: bytearray
	init: bytearray
	align: int
	kind: MemoryKind
	mutable: bool = True
	relocations: Dict[int, AllocId] = field(default_factory=dict)

	@classmethod
	def uninit(cls, size: int, align: int, kind: MemoryKind) -> "Allocation":
		return cls(bytearray(size), bytearray(size), align, kind)

	@classmethod
	def from_bytes(cls, data: bytes, align: int, kind: MemoryKind, mutable: bool) -> "Allocation":
		return cls(bytearray(data), bytearray(b"\x01" * len(data)), align, kind, mutable)

	@property
	def size(self) -> int:
		return len(self.data)

	def is_init(self, start: int, end: int) -> bool:
		return all(self.init[start:end])

	def relocations_in(self, start: int, end: int, ptr_size: int) -> List[Tuple[int, AllocId]]:
		"""Relocations overlapping [start, end); a relocation spans ptr_size bytes."""
		return sorted(
			(off, target)
			for off, target in self.relocations.items()
			if off < end and off + ptr_size > start
		)


class Memory:
	"""Owns every allocation of one evaluation context."""

	def __init__(self, target: TargetSpec, *, check_alignment: bool = True) -> None:
		self.target = target
		self.check_alignment = check_alignment
		self._allocs: Dict[AllocId, Allocation] = {}
		self._dead: Dict[AllocId, MemoryKind] = {}
		self._functions: Dict[AllocId, str] = {}
		self._fn_ids: Dict[str, AllocId] = {}
		self._ids = itertools.count(1)

	# Target facts

	def pointer_size(self) -> int:
		return self.target.pointer_size

	@property
	def endian(self) -> str:
		return self.target.endian

	# Allocation lifecycle

	def _next_id(self) -> AllocId:
		return next(self._ids)

	def allocate(self, size: int, align: int, kind: MemoryKind) -> Pointer:
		"""Create an uninitialized allocation and return a pointer to its start."""
		if size < 0:
			bug(f"negative allocation size {size}")
		if align <= 0 or align & (align - 1):
			ub(FaultKind.MISALIGNED, f"invalid allocation alignment {align}")
		alloc_id = self._next_id()
		self._allocs[alloc_id] = Allocation.uninit(size, align, kind)
		logger.debug("allocate alloc%d size=%d align=%d kind=%s", alloc_id, size, align, kind.name)
		return Pointer(alloc_id, 0)

	def allocate_bytes(self, data: bytes, *, kind: MemoryKind = MemoryKind.GLOBAL, align: int = 1, mutable: bool = False) -> Pointer:
		"""Create an initialized allocation holding `data` (string/byte literals)."""
		alloc_id = self._next_id()
		self._allocs[alloc_id] = Allocation.from_bytes(data, align, kind, mutable)
		logger.debug("allocate_bytes alloc%d size=%d kind=%s", alloc_id, len(data), kind.name)
		return Pointer(alloc_id, 0)

	def deallocate(
		self,
		ptr: Pointer,
		kind: MemoryKind,
		size: Optional[int] = None,
		align: Optional[int] = None,
	) -> None:
		"""Free the allocation `ptr` points to the start of; later accesses fault."""
		if not ptr.has_provenance:
			ub(FaultKind.DANGLING_POINTER, f"deallocating integer pointer {ptr}")
		if ptr.alloc_id in self._dead:
			ub(FaultKind.DOUBLE_FREE, f"double free of alloc{ptr.alloc_id}")
		if ptr.alloc_id in self._functions:
			ub(FaultKind.DEALLOC_WRONG_KIND, f"deallocating function pointer {ptr}")
		alloc = self._allocs.get(ptr.alloc_id)
		if alloc is None:
			bug(f"unknown allocation id {ptr.alloc_id}")
		if ptr.offset != 0:
			ub(FaultKind.DANGLING_POINTER, f"deallocating {ptr}, which does not point to the start of its allocation")
		if alloc.kind is not kind:
			ub(
				FaultKind.DEALLOC_WRONG_KIND,
				f"deallocating {kind.name} memory, but alloc{ptr.alloc_id} is {alloc.kind.name} memory",
			)
		if size is not None and size != alloc.size:
			ub(FaultKind.DEALLOC_WRONG_KIND, f"deallocating alloc{ptr.alloc_id} with size {size}, but it has size {alloc.size}")
		if align is not None and align != alloc.align:
			ub(FaultKind.DEALLOC_WRONG_KIND, f"deallocating alloc{ptr.alloc_id} with align {align}, but it has align {alloc.align}")
		del self._allocs[ptr.alloc_id]
		self._dead[ptr.alloc_id] = kind
		logger.debug("deallocate alloc%d kind=%s", ptr.alloc_id, kind.name)

	def reallocate(
		self,
		ptr: Pointer,
		old_size: int,
		old_align: int,
		new_size: int,
		new_align: int,
		kind: MemoryKind,
	) -> Pointer:
		"""Move the contents into a fresh allocation; the old one is freed."""
		self.get(ptr.alloc_id)
		new_ptr = self.allocate(new_size, new_align, kind)
		self.copy(ptr, new_ptr, min(old_size, new_size), nonoverlapping=True)
		self.deallocate(ptr, kind, old_size, old_align)
		return new_ptr

	def freeze(self, alloc_id: AllocId) -> None:
		"""Make an allocation read-only."""
		self.get(alloc_id).mutable = False

	def intern(self, alloc_id: AllocId, mutable: bool = False) -> None:
		"""Promote an allocation to permanent GLOBAL storage."""
		alloc = self.get(alloc_id)
		alloc.kind = MemoryKind.GLOBAL
		alloc.mutable = mutable

	# Lookup

	def get(self, alloc_id: AllocId) -> Allocation:
		alloc = self._allocs.get(alloc_id)
		if alloc is not None:
			return alloc
		if alloc_id == NO_ALLOC:
			ub(FaultKind.DANGLING_POINTER, "dereferencing a pointer without provenance")
		if alloc_id in self._dead:
			ub(FaultKind.DANGLING_POINTER, f"alloc{alloc_id} has been freed")
		if alloc_id in self._functions:
			ub(FaultKind.INVALID_FN_POINTER, f"alloc{alloc_id} is a function, not data")
		bug(f"unknown allocation id {alloc_id}")

	def get_mut(self, alloc_id: AllocId) -> Allocation:
		alloc = self.get(alloc_id)
		if not alloc.mutable:
			ub(FaultKind.WRITE_TO_READONLY, f"writing to read-only alloc{alloc_id} ({alloc.kind.name})")
		return alloc

	def is_live(self, alloc_id: AllocId) -> bool:
		return alloc_id in self._allocs or alloc_id in self._functions

	def is_dead(self, alloc_id: AllocId) -> bool:
		return alloc_id in self._dead

	def kind_of(self, alloc_id: AllocId) -> MemoryKind:
		if alloc_id in self._functions:
			return MemoryKind.FN
		return self.get(alloc_id).kind

	def live_allocations(self) -> Iterator[Tuple[AllocId, Allocation]]:
		return iter(list(self._allocs.items()))

	# Function pointers

	def create_fn_alloc(self, fn_name: str) -> Pointer:
		"""Return the (stable) pointer standing for function `fn_name`."""
		alloc_id = self._fn_ids.get(fn_name)
		if alloc_id is None:
			alloc_id = self._next_id()
			self._fn_ids[fn_name] = alloc_id
			self._functions[alloc_id] = fn_name
		return Pointer(alloc_id, 0)

	def get_fn(self, ptr: Pointer) -> str:
		"""Function named by a function pointer; anything else faults."""
		name = self._functions.get(ptr.alloc_id)
		if name is None or ptr.offset != 0:
			ub(FaultKind.INVALID_FN_POINTER, f"{ptr} is not a function pointer")
		return name

	def is_fn_ptr(self, ptr: Pointer) -> bool:
		return ptr.offset == 0 and ptr.alloc_id in self._functions

	# Checks

	def check_align(self, ptr: Pointer, align: int) -> None:
		if not self.check_alignment or align <= 1:
			return
		if not ptr.has_provenance:
			if ptr.offset % align:
				ub(FaultKind.MISALIGNED, f"address {ptr} is not aligned to {align} bytes")
			return
		alloc = self.get(ptr.alloc_id)
		if alloc.align < align:
			ub(FaultKind.MISALIGNED, f"alloc{ptr.alloc_id} has alignment {alloc.align}, but {align} is required")
		if ptr.offset % align:
			ub(FaultKind.MISALIGNED, f"pointer {ptr} is not aligned to {align} bytes")

	def check_bounds(self, ptr: Pointer, size: int, *, inclusive: bool = False) -> Allocation:
		"""
		Check that [ptr, ptr + size) lies within a live allocation.

		With `inclusive`, a one-past-the-end pointer (size 0 at the end) is
		accepted; this is what pointer arithmetic requires.
		"""
		alloc = self.get(ptr.alloc_id)
		end = ptr.offset + size
		if ptr.offset < 0 or end > alloc.size or (not inclusive and size == 0 and ptr.offset > alloc.size):
			ub(
				FaultKind.OUT_OF_BOUNDS,
				f"access of {size} bytes at {ptr} is out of bounds of alloc{ptr.alloc_id} (size {alloc.size})",
			)
		return alloc

	def check_ptr_access(self, ptr: Pointer, size: int, align: int) -> Optional[Allocation]:
		"""
		Validate an access of `size` bytes; returns None for zero-sized accesses.

		Zero-sized accesses only need a non-null, aligned pointer.
		"""
		if size == 0:
			if ptr.is_null:
				ub(FaultKind.NULL_POINTER, "zero-sized access through a null pointer")
			if ptr.has_provenance and ptr.alloc_id in self._dead:
				ub(FaultKind.DANGLING_POINTER, f"alloc{ptr.alloc_id} has been freed")
			if not ptr.has_provenance or ptr.alloc_id in self._allocs:
				self.check_align(ptr, align)
			return None
		if ptr.is_null:
			ub(FaultKind.NULL_POINTER, "null pointer dereference")
		self.check_align(ptr, align)
		return self.check_bounds(ptr, size)

	# Raw bytes

	def _raw(self, ptr: Pointer, size: int, align: int) -> Optional[Allocation]:
		return self.check_ptr_access(ptr, size, align)

	def read_bytes(self, ptr: Pointer, size: int, align: int = 1) -> bytes:
		"""Read initialized, pointer-free bytes."""
		alloc = self._raw(ptr, size, align)
		if alloc is None:
			return b""
		start, end = ptr.offset, ptr.offset + size
		if alloc.relocations_in(start, end, self.pointer_size()):
			ub(FaultKind.POINTER_AS_BYTES, f"reading pointer bytes at {ptr} as plain data")
		if not alloc.is_init(start, end):
			ub(FaultKind.UNINIT_READ, f"reading uninitialized memory at {ptr} ({size} bytes)")
		return bytes(alloc.data[start:end])

	def _clear_relocations(self, alloc: Allocation, start: int, end: int) -> None:
		ps = self.pointer_size()
		for off, _ in alloc.relocations_in(start, end, ps):
			del alloc.relocations[off]
			# Bytes of a partially overwritten pointer outside the write lose their value.
			for i in range(off, off + ps):
				if i < start or i >= end:
					alloc.init[i] = 0

	def write_bytes(self, ptr: Pointer, data: bytes, align: int = 1) -> None:
		size = len(data)
		if self.check_ptr_access(ptr, size, align) is None:
			return
		alloc = self.get_mut(ptr.alloc_id)
		start, end = ptr.offset, ptr.offset + size
		self._clear_relocations(alloc, start, end)
		alloc.data[start:end] = data
		alloc.init[start:end] = b"\x01" * size

	def write_repeat(self, ptr: Pointer, byte: int, count: int) -> None:
		self.write_bytes(ptr, bytes([byte & 0xFF]) * count)

	def mark_definedness(self, ptr: Pointer, size: int, defined: bool) -> None:
		if self.check_ptr_access(ptr, size, 1) is None:
			return
		alloc = self.get_mut(ptr.alloc_id)
		start, end = ptr.offset, ptr.offset + size
		self._clear_relocations(alloc, start, end)
		alloc.init[start:end] = (b"\x01" if defined else b"\x00") * size

	def copy(
		self,
		src: Pointer,
		dest: Pointer,
		size: int,
		*,
		src_align: int = 1,
		dest_align: int = 1,
		nonoverlapping: bool = False,
	) -> None:
		"""Copy bytes, init mask and relocations from `src` to `dest`."""
		src_alloc = self.check_ptr_access(src, size, src_align)
		if self.check_ptr_access(dest, size, dest_align) is None or src_alloc is None:
			return
		if nonoverlapping and src.alloc_id == dest.alloc_id:
			if src.offset < dest.offset + size and dest.offset < src.offset + size:
				ub(FaultKind.OVERLAPPING_COPY, "copy_nonoverlapping called on overlapping ranges")
		ps = self.pointer_size()
		s0, s1 = src.offset, src.offset + size
		data = bytes(src_alloc.data[s0:s1])
		init = bytes(src_alloc.init[s0:s1])
		# snapshot: clearing dest can drop relocations of an overlapping src
		src_relocs = src_alloc.relocations_in(s0, s1, ps)
		relocs = [(off - s0, target) for off, target in src_relocs if off >= s0 and off + ps <= s1]
		fragments = [(max(off, s0), min(off + ps, s1)) for off, _ in src_relocs if off < s0 or off + ps > s1]
		dest_alloc = self.get_mut(dest.alloc_id)
		d0, d1 = dest.offset, dest.offset + size
		self._clear_relocations(dest_alloc, d0, d1)
		dest_alloc.data[d0:d1] = data
		dest_alloc.init[d0:d1] = init
		for rel_off, target in relocs:
			dest_alloc.relocations[d0 + rel_off] = target
		# Fragments of pointers cut by the copy range carry no usable value.
		for lo, hi in fragments:
			for i in range(lo, hi):
				dest_alloc.init[d0 + i - s0] = 0

	# Integers

	def _decode(self, data: bytes, signed: bool) -> int:
		return int.from_bytes(data, self.endian, signed=signed)

	def _encode(self, value: int, size: int) -> bytes:
		return truncate(value, size).to_bytes(size, self.endian)

	def read_uint(self, ptr: Pointer, size: int) -> int:
		return self._decode(self.read_bytes(ptr, size, self.target.int_align(size)), False)

	def read_int(self, ptr: Pointer, size: int) -> int:
		return self._decode(self.read_bytes(ptr, size, self.target.int_align(size)), True)

	def write_uint(self, ptr: Pointer, value: int, size: int) -> None:
		if value < 0 or value >= (1 << (size * 8)):
			bug(f"value {value} does not fit u{size * 8}")
		self.write_bytes(ptr, self._encode(value, size), self.target.int_align(size))

	def write_int(self, ptr: Pointer, value: int, size: int) -> None:
		bits = size * 8
		if value < -(1 << (bits - 1)) or value >= (1 << (bits - 1)):
			bug(f"value {value} does not fit i{bits}")
		self.write_bytes(ptr, self._encode(value, size), self.target.int_align(size))

	def read_usize(self, ptr: Pointer) -> int:
		return self.read_uint(ptr, self.pointer_size())

	def write_usize(self, ptr: Pointer, value: int) -> None:
		self.write_uint(ptr, value, self.pointer_size())

	def read_isize(self, ptr: Pointer) -> int:
		return self.read_int(ptr, self.pointer_size())

	def write_isize(self, ptr: Pointer, value: int) -> None:
		self.write_int(ptr, value, self.pointer_size())

	def read_bool(self, ptr: Pointer) -> bool:
		byte = self.read_uint(ptr, 1)
		if byte not in (0, 1):
			ub(FaultKind.INVALID_VALUE, f"invalid boolean value {byte:#x} at {ptr}")
		return byte == 1

	def write_bool(self, ptr: Pointer, value: bool) -> None:
		self.write_uint(ptr, 1 if value else 0, 1)

	def read_f32(self, ptr: Pointer) -> float:
		fmt = "<f" if self.endian == "little" else ">f"
		return struct.unpack(fmt, self.read_bytes(ptr, 4, self.target.float_align(4)))[0]

	def read_f64(self, ptr: Pointer) -> float:
		fmt = "<d" if self.endian == "little" else ">d"
		return struct.unpack(fmt, self.read_bytes(ptr, 8, self.target.float_align(8)))[0]

	def write_f32(self, ptr: Pointer, value: float) -> None:
		fmt = "<f" if self.endian == "little" else ">f"
		self.write_bytes(ptr, struct.pack(fmt, value), self.target.float_align(4))

	def write_f64(self, ptr: Pointer, value: float) -> None:
		fmt = "<d" if self.endian == "little" else ">d"
		self.write_bytes(ptr, struct.pack(fmt, value), self.target.float_align(8))

	# Pointers

	def read_ptr(self, ptr: Pointer) -> Pointer:
		"""
		Read a pointer with provenance.

		The word must be fully initialized and carry a relocation recorded
		by write_ptr; plain integer bytes fault with INVALID_POINTER_READ.
		"""
		ps = self.pointer_size()
		alloc = self._raw(ptr, ps, self.target.pointer_align)
		assert alloc is not None
		start, end = ptr.offset, ptr.offset + ps
		if not alloc.is_init(start, end):
			ub(FaultKind.UNINIT_READ, f"reading uninitialized pointer at {ptr}")
		relocs = alloc.relocations_in(start, end, ps)
		if not relocs:
			ub(FaultKind.INVALID_POINTER_READ, f"reading plain bytes at {ptr} as a pointer")
		if relocs[0][0] != start or len(relocs) != 1:
			ub(FaultKind.INVALID_POINTER_READ, f"reading a fragment of a pointer at {ptr}")
		offset = self._decode(bytes(alloc.data[start:end]), False)
		return Pointer(relocs[0][1], offset)

	def read_ptr_sized(self, ptr: Pointer) -> PrimVal:
		"""Word read that keeps provenance when present and accepts plain integers."""
		ps = self.pointer_size()
		alloc = self._raw(ptr, ps, self.target.pointer_align)
		assert alloc is not None
		start, end = ptr.offset, ptr.offset + ps
		if not alloc.is_init(start, end):
			return PrimVal.undef()
		relocs = alloc.relocations_in(start, end, ps)
		raw = self._decode(bytes(alloc.data[start:end]), False)
		if not relocs:
			return PrimVal.from_uint(raw, ps)
		if relocs[0][0] != start or len(relocs) != 1:
			ub(FaultKind.INVALID_POINTER_READ, f"reading a fragment of a pointer at {ptr}")
		target_id = relocs[0][1]
		value = Pointer(target_id, raw)
		if target_id in self._functions:
			return PrimVal.from_fn_ptr(value)
		return PrimVal.from_ptr(value)

	def write_ptr(self, dest: Pointer, value: Pointer) -> None:
		"""Store `value`'s offset bytes and record its provenance at `dest`."""
		ps = self.pointer_size()
		self.write_bytes(dest, self._encode(value.offset, ps), self.target.pointer_align)
		if value.has_provenance:
			self.get_mut(dest.alloc_id).relocations[dest.offset] = value.alloc_id

	# Typed scalars

	def read_primval(self, ptr: Pointer, scalar: Scalar) -> PrimVal:
		"""Load one scalar; uninitialized bytes yield PrimVal.undef()."""
		size = scalar.size
		if scalar.kind in (ScalarKind.POINTER, ScalarKind.FN_POINTER):
			prim = self.read_ptr_sized(ptr)
			if prim.is_undef:
				return prim
			target = prim.ptr if prim.is_ptr else Pointer.from_int(prim.bits)
			assert target is not None
			if scalar.kind is ScalarKind.FN_POINTER:
				return PrimVal.from_fn_ptr(target)
			return PrimVal.from_ptr(target)
		align = self.target.float_align(size) if scalar.kind is ScalarKind.FLOAT else self.target.int_align(size)
		alloc = self._raw(ptr, size, align)
		if alloc is None:
			bug("zero-sized scalar")
		start, end = ptr.offset, ptr.offset + size
		if not alloc.is_init(start, end):
			return PrimVal.undef()
		relocs = alloc.relocations_in(start, end, self.pointer_size())
		if relocs:
			if size == self.pointer_size() and scalar.kind is ScalarKind.INT and relocs[0][0] == start and len(relocs) == 1:
				# Pointer stored in an integer slot: keep provenance, faults happen on use.
				return self.read_ptr_sized(ptr)
			ub(FaultKind.POINTER_AS_BYTES, f"reading part of a pointer at {ptr} as a {size}-byte scalar")
		raw = self._decode(bytes(alloc.data[start:end]), False)
		if scalar.kind is ScalarKind.BOOL:
			return PrimVal(PrimValKind.BOOL, raw)
		if scalar.kind is ScalarKind.CHAR:
			return PrimVal(PrimValKind.CHAR, raw)
		if scalar.kind is ScalarKind.FLOAT:
			return PrimVal(PrimValKind.F32 if size == 4 else PrimValKind.F64, raw)
		return PrimVal(int_kind(size, scalar.signed), raw)

	def write_primval(self, ptr: Pointer, prim: PrimVal, size: int) -> None:
		"""Store one scalar of `size` bytes; UNDEF de-initializes the bytes."""
		if prim.is_undef:
			self.mark_definedness(ptr, size, False)
			return
		if prim.kind.is_ptr:
			assert prim.ptr is not None
			if size != self.pointer_size():
				ub(FaultKind.POINTER_AS_BYTES, f"storing a pointer into a {size}-byte slot")
			self.write_ptr(ptr, prim.ptr)
			return
		if prim.kind.size and prim.kind.size != size:
			bug(f"writing a {prim.kind.label} into a {size}-byte slot")
		if prim.kind.is_float:
			align = self.target.float_align(size)
		else:
			align = self.target.int_align(size)
		self.write_bytes(ptr, self._encode(prim.bits, size), align)

	# Leak check and debugging

	def leak_report(self, may_leak: Callable[[MemoryKind], bool]) -> List[AllocId]:
		leaks = [alloc_id for alloc_id, alloc in self._allocs.items() if not may_leak(alloc.kind)]
		if leaks:
			logger.warning("memory leaked: %s", ", ".join(f"alloc{a}" for a in leaks))
		return leaks

	def dump_alloc(self, alloc_id: AllocId) -> str:
		if alloc_id in self._functions:
			return f"alloc{alloc_id}: function {self._functions[alloc_id]}"
		if alloc_id in self._dead:
			return f"alloc{alloc_id}: deallocated ({self._dead[alloc_id].name})"
		alloc = self.get(alloc_id)
		cells = []
		for i in range(alloc.size):
			cells.append(f"{alloc.data[i]:02x}" if alloc.init[i] else "__")
		relocs = " ".join(f"@{off}->alloc{t}" for off, t in sorted(alloc.relocations.items()))
		text = (
			f"alloc{alloc_id} ({alloc.kind.name}, size {alloc.size}, align {alloc.align}"
			f"{', read-only' if not alloc.mutable else ''}): {' '.join(cells)}"
		)
		if relocs:
			text += f" [{relocs}]"
		logger.debug("%s", text)
		return text


__all__ = ["MemoryKind", "Allocation", "Memory"]
