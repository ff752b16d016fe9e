# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Helper to construct MIR functions incrementally.

Front ends (and the test suite) use this instead of spelling out
`MirFunc(locals=[...], blocks=[...])` by hand:

    b = MirBuilder("add1", FnSig((u32,), u32))
    x = b.arg(0)
    b.assign(b.ret(), M.BinaryOp(M.BinOp.ADD, b.copy(x), b.const(u32, 1)))
    b.set_terminator(M.Return())
    func = b.finish()
"""

from __future__ import annotations

from typing import Optional, Sequence

from mirvm.core.types_core import FnSig, TypeId
from . import mir_nodes as M


class MirBuilder:
	"""
	Builds one MirFunc.

	Manages:
	- the return/argument locals (created from the signature)
	- fresh temporaries
	- the current block pointer (block 0 is the entry block)
	"""

	def __init__(self, name: str, sig: FnSig, *, is_const: bool = False, arg_names: Sequence[str] = ()):
		self.func = M.MirFunc(name=name, sig=sig, arg_count=len(sig.params), is_const=is_const)
		self.func.locals.append(M.LocalDecl(sig.ret, "_ret"))
		for idx, ty in enumerate(sig.params):
			name_hint = arg_names[idx] if idx < len(arg_names) else f"arg{idx}"
			self.func.locals.append(M.LocalDecl(ty, name_hint))
		self.func.blocks.append(M.BasicBlock())
		self.block: M.BlockId = 0

	# Locals

	def ret(self) -> M.Place:
		return M.Place(M.RETURN_PLACE)

	def arg(self, index: int) -> M.Place:
		if index >= self.func.arg_count:
			raise IndexError(f"{self.func.name} has {self.func.arg_count} args")
		return M.Place(index + 1)

	def new_local(self, ty: TypeId, name: Optional[str] = None) -> M.Place:
		"""Declare a fresh local and return its (unprojected) place."""
		self.func.locals.append(M.LocalDecl(ty, name))
		return M.Place(len(self.func.locals) - 1)

	# Blocks

	def new_block(self) -> M.BlockId:
		"""Create a new empty block; caller switches to it via set_block."""
		self.func.blocks.append(M.BasicBlock())
		return len(self.func.blocks) - 1

	def set_block(self, block: M.BlockId) -> None:
		self.block = block

	def emit(self, stmt: M.Statement) -> None:
		"""Append a statement to the current block."""
		current = self.func.blocks[self.block]
		if current.terminator is not None:
			raise AssertionError(f"bb{self.block} of {self.func.name} is already terminated")
		current.statements.append(stmt)

	def assign(self, place: M.Place, rvalue: M.Rvalue) -> None:
		self.emit(M.Assign(place, rvalue))

	def set_terminator(self, term: M.Terminator) -> None:
		"""Set the terminator for the current block."""
		self.func.blocks[self.block].terminator = term

	# Operand shorthands

	@staticmethod
	def copy(place: M.Place) -> M.Copy:
		return M.Copy(place)

	@staticmethod
	def move(place: M.Place) -> M.Move:
		return M.Move(place)

	@staticmethod
	def const(ty: TypeId, value: object = None) -> M.Constant:
		return M.Constant(ty, value)

	def finish(self) -> M.MirFunc:
		for idx, block in enumerate(self.func.blocks):
			if block.terminator is None:
				raise AssertionError(f"bb{idx} of {self.func.name} has no terminator")
		return self.func


__all__ = ["MirBuilder"]
