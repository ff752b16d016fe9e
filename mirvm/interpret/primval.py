# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
PrimVal: one tagged scalar held outside memory.

Integers (signed or not), booleans and chars carry their raw unsigned bit
pattern in `bits`; floats carry their IEEE-754 bit pattern. Data and
function pointers carry a Pointer instead. UNDEF is an uninitialized
scalar: copying it around is fine, using it (arithmetic, branching,
dereferencing) is a fault.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import FaultKind, bug, ub
from .pointer import Pointer


class PrimValKind(Enum):
	U8 = ("u8", 1, False)
	U16 = ("u16", 2, False)
	U32 = ("u32", 4, False)
	U64 = ("u64", 8, False)
	I8 = ("i8", 1, True)
	I16 = ("i16", 2, True)
	I32 = ("i32", 4, True)
	I64 = ("i64", 8, True)
	F32 = ("f32", 4, True)
	F64 = ("f64", 8, True)
	BOOL = ("bool", 1, False)
	CHAR = ("char", 4, False)
	PTR = ("ptr", 0, False)
	FN_PTR = ("fn_ptr", 0, False)
	UNDEF = ("undef", 0, False)

	def __init__(self, label: str, size: int, signed: bool) -> None:
		self.label = label
		self.size = size
		self.signed = signed

	@property
	def is_int(self) -> bool:
		return self in _INT_KINDS

	@property
	def is_unsigned_int(self) -> bool:
		return self in _UINT_KINDS

	@property
	def is_signed_int(self) -> bool:
		return self in _SINT_KINDS

	@property
	def is_float(self) -> bool:
		return self in (PrimValKind.F32, PrimValKind.F64)

	@property
	def is_ptr(self) -> bool:
		return self in (PrimValKind.PTR, PrimValKind.FN_PTR)


_UINT_KINDS = frozenset({PrimValKind.U8, PrimValKind.U16, PrimValKind.U32, PrimValKind.U64})
_SINT_KINDS = frozenset({PrimValKind.I8, PrimValKind.I16, PrimValKind.I32, PrimValKind.I64})
_INT_KINDS = _UINT_KINDS | _SINT_KINDS

_UINT_BY_SIZE = {1: PrimValKind.U8, 2: PrimValKind.U16, 4: PrimValKind.U32, 8: PrimValKind.U64}
_SINT_BY_SIZE = {1: PrimValKind.I8, 2: PrimValKind.I16, 4: PrimValKind.I32, 8: PrimValKind.I64}


def uint_kind(size: int) -> PrimValKind:
	try:
		return _UINT_BY_SIZE[size]
	except KeyError:
		bug(f"no unsigned integer kind of {size} bytes")


def int_kind(size: int, signed: bool) -> PrimValKind:
	table = _SINT_BY_SIZE if signed else _UINT_BY_SIZE
	try:
		return table[size]
	except KeyError:
		bug(f"no integer kind of {size} bytes")


def truncate(value: int, size: int) -> int:
	return value & ((1 << (size * 8)) - 1)


def sign_extend(bits: int, size: int) -> int:
	width = size * 8
	bits = truncate(bits, size)
	if bits >> (width - 1):
		return bits - (1 << width)
	return bits


@dataclass(frozen=True)
class PrimVal:
	kind: PrimValKind
	bits: int = 0
	ptr: Optional[Pointer] = None

	# Constructors

	@classmethod
	def from_uint(cls, value: int, size: int) -> "PrimVal":
		return cls(uint_kind(size), truncate(value, size))

	@classmethod
	def from_int(cls, value: int, size: int) -> "PrimVal":
		return cls(int_kind(size, True), truncate(value, size))

	@classmethod
	def from_bits(cls, bits: int, kind: PrimValKind) -> "PrimVal":
		if kind.is_ptr or kind is PrimValKind.UNDEF:
			bug(f"from_bits cannot build a {kind.label}")
		return cls(kind, truncate(bits, kind.size))

	@classmethod
	def from_bool(cls, value: bool) -> "PrimVal":
		return cls(PrimValKind.BOOL, 1 if value else 0)

	@classmethod
	def from_char(cls, value: int | str) -> "PrimVal":
		code = ord(value) if isinstance(value, str) else value
		return cls(PrimValKind.CHAR, code)

	@classmethod
	def from_f32(cls, value: float) -> "PrimVal":
		try:
			bits = struct.unpack("<I", struct.pack("<f", value))[0]
		except OverflowError:
			# Finite doubles beyond the f32 range round to infinity.
			bits = 0xFF800000 if value < 0 else 0x7F800000
		return cls(PrimValKind.F32, bits)

	@classmethod
	def from_f64(cls, value: float) -> "PrimVal":
		return cls(PrimValKind.F64, struct.unpack("<Q", struct.pack("<d", value))[0])

	@classmethod
	def from_float(cls, value: float, size: int) -> "PrimVal":
		return cls.from_f32(value) if size == 4 else cls.from_f64(value)

	@classmethod
	def from_ptr(cls, ptr: Pointer) -> "PrimVal":
		return cls(PrimValKind.PTR, 0, ptr)

	@classmethod
	def from_fn_ptr(cls, ptr: Pointer) -> "PrimVal":
		return cls(PrimValKind.FN_PTR, 0, ptr)

	@classmethod
	def undef(cls) -> "PrimVal":
		return cls(PrimValKind.UNDEF)

	# Queries

	@property
	def is_undef(self) -> bool:
		return self.kind is PrimValKind.UNDEF

	@property
	def is_ptr(self) -> bool:
		return self.kind.is_ptr

	def _require_defined(self) -> None:
		if self.kind is PrimValKind.UNDEF:
			ub(FaultKind.UNINIT_READ, "using uninitialized data")

	def to_bits(self) -> int:
		"""Raw bit pattern; pointers with provenance cannot be turned into bits."""
		self._require_defined()
		if self.kind.is_ptr:
			assert self.ptr is not None
			if self.ptr.has_provenance:
				ub(FaultKind.POINTER_AS_BYTES, f"pointer {self.ptr} used where plain bits are required")
			return self.ptr.offset
		return self.bits

	def to_u64(self) -> int:
		"""Unsigned value of an integer/bool/char scalar."""
		self._require_defined()
		if self.kind.is_ptr:
			return self.to_bits()
		if self.kind.is_float:
			bug(f"to_u64 on a {self.kind.label}")
		return self.bits

	def to_i64(self) -> int:
		"""Signed value; sign-extends according to the scalar's own width."""
		self._require_defined()
		if self.kind.is_signed_int:
			return sign_extend(self.bits, self.kind.size)
		if self.kind.is_unsigned_int or self.kind in (PrimValKind.BOOL, PrimValKind.CHAR):
			return self.bits
		bug(f"to_i64 on a {self.kind.label}")

	def to_int_value(self) -> int:
		"""Mathematical value honouring signedness of the kind."""
		return self.to_i64() if self.kind.is_signed_int else self.to_u64()

	def to_bool(self) -> bool:
		self._require_defined()
		if self.kind is PrimValKind.BOOL or self.kind is PrimValKind.U8:
			if self.bits == 0:
				return False
			if self.bits == 1:
				return True
			ub(FaultKind.INVALID_VALUE, f"invalid boolean value {self.bits:#x}")
		bug(f"to_bool on a {self.kind.label}")

	def to_char(self) -> str:
		self._require_defined()
		if self.kind.is_ptr or self.kind.is_float:
			bug(f"to_char on a {self.kind.label}")
		code = self.bits
		if code > 0x10FFFF or 0xD800 <= code <= 0xDFFF:
			ub(FaultKind.INVALID_VALUE, f"invalid char code point {code:#x}")
		return chr(code)

	def to_float(self) -> float:
		self._require_defined()
		if self.kind is PrimValKind.F32:
			return struct.unpack("<f", struct.pack("<I", self.bits))[0]
		if self.kind is PrimValKind.F64:
			return struct.unpack("<d", struct.pack("<Q", self.bits))[0]
		bug(f"to_float on a {self.kind.label}")

	def to_ptr(self) -> Pointer:
		"""Pointer view; plain integers become provenance-free addresses."""
		self._require_defined()
		if self.kind.is_ptr:
			assert self.ptr is not None
			return self.ptr
		if self.kind.is_int:
			return Pointer.from_int(self.bits)
		bug(f"to_ptr on a {self.kind.label}")

	def __str__(self) -> str:
		if self.kind is PrimValKind.UNDEF:
			return "undef"
		if self.kind.is_ptr:
			return f"{self.kind.label}({self.ptr})"
		if self.kind.is_float:
			return f"{self.to_float()}{self.kind.label}"
		if self.kind is PrimValKind.BOOL:
			return "true" if self.bits == 1 else ("false" if self.bits == 0 else f"bool({self.bits:#x})")
		if self.kind.is_signed_int:
			return f"{sign_extend(self.bits, self.kind.size)}{self.kind.label}"
		return f"{self.bits}{self.kind.label}"


__all__ = [
	"PrimValKind",
	"PrimVal",
	"uint_kind",
	"int_kind",
	"truncate",
	"sign_extend",
]
