# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
MIR location used by faults and diagnostics.

A Span names the statement (or terminator) the engine was executing when a
fault was raised: the function, the basic block, and the statement index
within the block. The terminator of a block is addressed by
`index == len(block.statements)`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Span:
	"""Best-effort MIR location (function/block/statement index)."""

	function: Optional[str] = None
	block: Optional[int] = None
	index: Optional[int] = None

	@property
	def is_known(self) -> bool:
		return self.function is not None

	def __str__(self) -> str:
		if not self.is_known:
			return "<unknown>"
		if self.block is None:
			return self.function or "<unknown>"
		return f"{self.function}:bb{self.block}[{self.index}]"


__all__ = ["Span"]
