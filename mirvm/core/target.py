# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Target machine description consumed by the memory model and layout oracle.

Only two facts matter to the interpreter: the pointer width (which is also
the width of `usize`/`isize` and of every fat-pointer metadata word) and
the byte order. Integer/float ABI alignments are kept because the layout
oracle needs them.

A TargetSpec can be built from an LLVM-style data-layout string, e.g.

    e-m:e-p270:32:32-p271:32:32-p272:64:64-i64:64-i128:128-f80:128-n8:16:32:64-S128

Unspecified items fall back to the LLVM defaults (big-endian, 64-bit
pointers) except integer/float alignment, which defaults to natural
alignment.
"""

from __future__ import annotations

import struct
import sys
from dataclasses import dataclass, field
from typing import Dict, Tuple

from lark import Lark, Transformer
from lark.exceptions import LarkError


_DATALAYOUT_GRAMMAR = r"""
?start: layout
layout: item ("-" item)*
?item: endian
	| mangling
	| pointer
	| align_spec
	| native
	| opaque

endian: ENDIAN
mangling: "m" ":" MANGLE
pointer: "p" [INT] ":" INT ":" INT (":" INT)*
align_spec: ALIGN_KIND [INT] ":" INT (":" INT)*
native: "n" INT (":" INT)*
opaque: OPAQUE

ENDIAN: "e" | "E"
ALIGN_KIND: "i" | "f" | "v" | "a"
MANGLE: /[a-z]/
OPAQUE: /[A-DF-Z][A-Za-z0-9]*/
%import common.INT
"""

_PARSER = Lark(_DATALAYOUT_GRAMMAR, parser="lalr")


class TargetError(ValueError):
	"""Raised for data-layout strings the target model cannot represent."""


class _LayoutItems(Transformer):
	"""Turn the parse tree into a flat list of `(tag, payload)` items."""

	def layout(self, items):
		return list(items)

	def endian(self, children):
		return ("endian", "little" if str(children[0]) == "e" else "big")

	def mangling(self, children):
		return ("mangling", str(children[0]))

	def pointer(self, children):
		addrspace, size, abi = children[0], children[1], children[2]
		return ("pointer", (int(addrspace) if addrspace is not None else 0, int(size), int(abi)))

	def align_spec(self, children):
		kind, size, abi = children[0], children[1], children[2]
		return ("align", (str(kind), int(size) if size is not None else 0, int(abi)))

	def native(self, children):
		return ("native", tuple(int(c) for c in children))

	def opaque(self, children):
		return ("opaque", str(children[0]))


@dataclass(frozen=True)
class TargetSpec:
	"""Pointer width and byte order of the evaluated program's target."""

	pointer_size: int = 8  # bytes
	endian: str = "little"  # "little" | "big"
	pointer_align: int = 8  # bytes
	# bit width -> ABI alignment in bytes, for `i` and `f` data-layout items.
	int_aligns: Dict[int, int] = field(default_factory=dict, compare=False)
	float_aligns: Dict[int, int] = field(default_factory=dict, compare=False)
	native_int_widths: Tuple[int, ...] = ()

	def __post_init__(self) -> None:
		if self.pointer_size not in (2, 4, 8):
			raise TargetError(f"unsupported pointer size {self.pointer_size} bytes")
		if self.endian not in ("little", "big"):
			raise TargetError(f"unknown byte order {self.endian!r}")

	@property
	def pointer_bits(self) -> int:
		return self.pointer_size * 8

	@property
	def usize_max(self) -> int:
		return (1 << self.pointer_bits) - 1

	@property
	def isize_min(self) -> int:
		return -(1 << (self.pointer_bits - 1))

	@property
	def isize_max(self) -> int:
		return (1 << (self.pointer_bits - 1)) - 1

	def int_align(self, size: int) -> int:
		"""ABI alignment (bytes) of an integer of `size` bytes."""
		return self.int_aligns.get(size * 8, size)

	def float_align(self, size: int) -> int:
		"""ABI alignment (bytes) of a float of `size` bytes."""
		return self.float_aligns.get(size * 8, size)

	@classmethod
	def host(cls) -> "TargetSpec":
		"""Describe the host the interpreter runs on."""
		ptr = struct.calcsize("P")
		return cls(pointer_size=ptr, endian=sys.byteorder, pointer_align=ptr)

	@classmethod
	def for_word_bits(cls, bits: int, endian: str = "little") -> "TargetSpec":
		"""Shorthand for a target that only differs by pointer width."""
		size = bits // 8
		return cls(pointer_size=size, endian=endian, pointer_align=size)

	@classmethod
	def from_datalayout(cls, layout: str) -> "TargetSpec":
		"""
		Build a TargetSpec from an LLVM data-layout string.

		Only address space 0 pointers are honoured; other address spaces are
		parsed and ignored. Raises TargetError for malformed strings.
		"""
		try:
			tree = _PARSER.parse(layout)
		except LarkError as exc:
			raise TargetError(f"malformed data layout {layout!r}: {exc}") from exc
		items = _LayoutItems().transform(tree)
		if not isinstance(items, list):
			items = [items]
		endian = "big"
		pointer_bits, pointer_abi_bits = 64, 64
		int_aligns: Dict[int, int] = {}
		float_aligns: Dict[int, int] = {}
		native: Tuple[int, ...] = ()
		for tag, payload in items:
			if tag == "endian":
				endian = payload
			elif tag == "pointer":
				addrspace, size, abi = payload
				if addrspace == 0:
					pointer_bits, pointer_abi_bits = size, abi
			elif tag == "align":
				kind, size, abi = payload
				if kind == "i":
					int_aligns[size] = abi // 8
				elif kind == "f":
					float_aligns[size] = abi // 8
			elif tag == "native":
				native = payload
		if pointer_bits % 8 or pointer_abi_bits % 8:
			raise TargetError(f"pointer width must be a whole number of bytes in {layout!r}")
		return cls(
			pointer_size=pointer_bits // 8,
			endian=endian,
			pointer_align=pointer_abi_bits // 8,
			int_aligns=int_aligns,
			float_aligns=float_aligns,
			native_int_widths=native,
		)


__all__ = ["TargetSpec", "TargetError"]
