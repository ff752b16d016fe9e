# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Machine policy: what an evaluation is allowed to do.

The engine is shared by both drivers; everything that differs between
compile-time evaluation and checked execution goes through a Machine:
heap use, modelled output, which functions may be called, which
allocation kinds may outlive the run, and how strict validity is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence

from mirvm.mir.mir_nodes import MirFunc
from .errors import FaultKind, unsupported
from .memory import MemoryKind

if TYPE_CHECKING:
	from .eval_context import InterpCx
	from .operand import OpTy
	from .place import PlaceTy


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MachineConfig:
	"""Knobs shared by every machine."""

	step_limit: Optional[int] = 1_000_000  # None disables the step budget
	stack_limit: int = 256
	check_alignment: bool = True
	validate: bool = True  # run validity checkpoints
	leak_check: bool = True
	isolate_internal_errors: bool = False  # report engine defects as INTERNAL diagnostics


class Machine:
	"""Base policy; subclasses override the hooks they need."""

	name = "machine"
	heap_allowed = False
	const_mode = False  # validity rejects pointers stored in integers

	def __init__(self, config: MachineConfig | None = None) -> None:
		self.config = config if config is not None else MachineConfig()

	def may_leak(self, kind: MemoryKind) -> bool:
		return kind in (MemoryKind.GLOBAL, MemoryKind.VTABLE, MemoryKind.FN)

	def before_call(self, ecx: "InterpCx", func: MirFunc) -> None:
		"""Hook run before a MIR function is entered."""

	def write_output(self, ecx: "InterpCx", data: bytes) -> None:
		unsupported("output is not available to this machine")

	def call_extern(
		self,
		ecx: "InterpCx",
		name: str,
		args: Sequence["OpTy"],
		dest: Optional["PlaceTy"],
	) -> None:
		"""Functions with neither MIR nor an intrinsic implementation."""
		unsupported(f"cannot call {name!r}: no MIR body and not an intrinsic")


class ConstEvalMachine(Machine):
	"""Compile-time evaluation: no heap, no output, only const functions."""

	name = "const-eval"
	const_mode = True

	def before_call(self, ecx: "InterpCx", func: MirFunc) -> None:
		if not func.is_const:
			unsupported(f"calling non-const function {func.name!r} in a constant", FaultKind.NON_CONST_CALL)

	def write_output(self, ecx: "InterpCx", data: bytes) -> None:
		unsupported("output is not allowed during constant evaluation")


class CheckedMachine(Machine):
	"""Checked execution: heap allowed, output captured instead of printed."""

	name = "checked"
	heap_allowed = True

	def __init__(self, config: MachineConfig | None = None) -> None:
		super().__init__(config)
		self.output = bytearray()
		self.writes: List[bytes] = []

	def write_output(self, ecx: "InterpCx", data: bytes) -> None:
		logger.debug("modelled output: %r", data)
		self.output += data
		self.writes.append(data)


__all__ = ["MachineConfig", "Machine", "ConstEvalMachine", "CheckedMachine"]
