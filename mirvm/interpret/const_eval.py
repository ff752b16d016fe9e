# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Compile-time evaluation driver.

`eval_const` runs a nullary const function on the ConstEvalMachine, checks
the result for validity, and interns it (plus everything it points to)
into permanent read-only memory. Faults never escape as exceptions; they
come back as diagnostics on the result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from mirvm.core.diagnostics import Diagnostic
from mirvm.core.layout import Layout
from mirvm.core.target import TargetSpec
from mirvm.mir.mir_nodes import Program
from .errors import InternalInvariantViolation, InterpError
from .eval_context import InterpCx
from .frame import StackPopCleanup
from .intern import InternKind, intern_const_alloc_recursive
from .machine import ConstEvalMachine, MachineConfig
from .memory import MemoryKind
from .operand import OpTy
from .place import MemPlace, PlaceTy
from .pointer import Pointer
from .primval import PrimVal
from .validity import validate_operand
from .value import ByRef, ByVal, Value


logger = logging.getLogger(__name__)


@dataclass
class ConstEvalResult:
	fn_name: str
	ecx: InterpCx
	value: Optional[Value] = None
	layout: Optional[Layout] = None
	diagnostics: List[Diagnostic] = field(default_factory=list)

	@property
	def ok(self) -> bool:
		return self.value is not None and not any(d.severity == "error" for d in self.diagnostics)

	@property
	def steps(self) -> int:
		return self.ecx.steps

	@property
	def scalar(self) -> Optional[PrimVal]:
		return self.value.prim if isinstance(self.value, ByVal) else None

	def read_bytes(self) -> bytes:
		"""Raw bytes of the interned result (only for results held in memory)."""
		if self.value is None or self.layout is None:
			raise ValueError(f"constant {self.fn_name} has no value")
		if not isinstance(self.value, ByRef):
			raise ValueError(f"constant {self.fn_name} is an immediate ({self.value})")
		return self.ecx.memory.read_bytes(self.value.ptr, self.layout.size)


def _release_slot(ecx: InterpCx, ptr: Pointer) -> None:
	if ecx.memory.is_live(ptr.alloc_id) and ecx.memory.kind_of(ptr.alloc_id) is MemoryKind.STACK:
		ecx.memory.deallocate(ptr, MemoryKind.STACK)


def eval_const(
	program: Program,
	fn_name: str,
	*,
	target: TargetSpec | None = None,
	config: MachineConfig | None = None,
	intern_kind: InternKind = InternKind.CONSTANT,
) -> ConstEvalResult:
	"""Evaluate the nullary function `fn_name` as the body of a constant."""
	func = program.functions.get(fn_name)
	if func is None:
		raise KeyError(f"no function named {fn_name!r}")
	if func.arg_count != 0:
		raise ValueError(f"constant initializer {fn_name} must take no arguments, it takes {func.arg_count}")
	machine = ConstEvalMachine(config)
	ecx = InterpCx(program, machine, target)
	result = ConstEvalResult(fn_name, ecx)
	layout = ecx.layout_of(func.sig.ret)
	ptr = ecx.memory.allocate(layout.size, layout.align, MemoryKind.STACK)
	place = PlaceTy(MemPlace(ptr, layout.align), layout)
	try:
		ecx.push_frame(func, [], place, None, StackPopCleanup.NONE)
		ecx.run()
		op = OpTy.indirect(place.mplace, layout)
		if machine.config.validate:
			validate_operand(ecx, op, const_mode=True)
		intern_const_alloc_recursive(ecx, intern_kind, place.mplace, layout)
		result.value = ecx.read_value(op)
		result.layout = layout
	except InterpError as err:
		logger.debug("const eval of %s failed: %s", fn_name, err)
		result.diagnostics.append(err.to_diagnostic())
		_release_slot(ecx, ptr)
	except InternalInvariantViolation as exc:
		if not machine.config.isolate_internal_errors:
			raise
		logger.debug("const eval of %s hit an engine defect: %s", fn_name, exc)
		result.diagnostics.append(exc.to_diagnostic())
		_release_slot(ecx, ptr)
	return result


__all__ = ["ConstEvalResult", "eval_const"]
