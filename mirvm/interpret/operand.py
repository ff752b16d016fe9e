# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Operands: something a value can be read from.

An operand is either an Immediate (a Value held outside memory: ByVal,
ByValPair, or the dangling ByRef of a zero-sized value) or Indirect (a
memory place to be decoded according to its layout when read).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from mirvm.core.layout import Layout
from .place import MemPlace
from .value import Value


@dataclass(frozen=True)
class Immediate:
	value: Value


@dataclass(frozen=True)
class Indirect:
	mplace: MemPlace


@dataclass(frozen=True)
class OpTy:
	op: Union[Immediate, Indirect]
	layout: Layout

	@classmethod
	def immediate(cls, value: Value, layout: Layout) -> "OpTy":
		return cls(Immediate(value), layout)

	@classmethod
	def indirect(cls, mplace: MemPlace, layout: Layout) -> "OpTy":
		return cls(Indirect(mplace), layout)


__all__ = ["Immediate", "Indirect", "OpTy"]
