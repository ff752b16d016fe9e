# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Checked execution driver.

`run_checked` executes an entry function on the CheckedMachine: heap
allowed, output captured rather than printed, every access checked. After
a clean exit the leak check reports memory the program never released.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from mirvm.core.diagnostics import Diagnostic
from mirvm.core.target import TargetSpec
from mirvm.mir.mir_nodes import Program
from .errors import FaultKind, InternalInvariantViolation, InterpError
from .eval_context import InterpCx
from .frame import EngineState, StackPopCleanup
from .machine import CheckedMachine, MachineConfig
from .memory import MemoryKind
from .operand import OpTy
from .place import MemPlace, PlaceTy
from .pointer import AllocId
from .primval import PrimVal
from .value import ByVal, Value


logger = logging.getLogger(__name__)


@dataclass
class RunResult:
	entry: str
	ecx: InterpCx
	value: Optional[Value] = None
	diagnostics: List[Diagnostic] = field(default_factory=list)
	leaks: List[AllocId] = field(default_factory=list)

	@property
	def ok(self) -> bool:
		return self.value is not None and not any(d.severity == "error" for d in self.diagnostics)

	@property
	def faulted(self) -> bool:
		return self.ecx.state is EngineState.FAULTED

	@property
	def steps(self) -> int:
		return self.ecx.steps

	@property
	def scalar(self) -> Optional[PrimVal]:
		return self.value.prim if isinstance(self.value, ByVal) else None

	@property
	def output(self) -> bytes:
		machine = self.ecx.machine
		return bytes(machine.output) if isinstance(machine, CheckedMachine) else b""


def run_checked(
	program: Program,
	entry: str = "main",
	*,
	target: TargetSpec | None = None,
	config: MachineConfig | None = None,
	machine: CheckedMachine | None = None,
) -> RunResult:
	"""Run the nullary function `entry` under checked execution."""
	func = program.functions.get(entry)
	if func is None:
		raise KeyError(f"no function named {entry!r}")
	if func.arg_count != 0:
		raise ValueError(f"entry point {entry} must take no arguments, it takes {func.arg_count}")
	if machine is None:
		machine = CheckedMachine(config)
	ecx = InterpCx(program, machine, target)
	result = RunResult(entry, ecx)
	layout = ecx.layout_of(func.sig.ret)
	# The result slot is GLOBAL memory so a by-reference result outlives the run.
	ptr = ecx.memory.allocate(layout.size, layout.align, MemoryKind.GLOBAL)
	place = PlaceTy(MemPlace(ptr, layout.align), layout)
	try:
		ecx.push_frame(func, [], place, None, StackPopCleanup.NONE)
		ecx.run()
		result.value = ecx.read_value(OpTy.indirect(place.mplace, layout))
	except InterpError as err:
		logger.debug("run of %s faulted: %s", entry, err)
		result.diagnostics.append(err.to_diagnostic())
		return result
	except InternalInvariantViolation as exc:
		if not machine.config.isolate_internal_errors:
			raise
		logger.debug("run of %s hit an engine defect: %s", entry, exc)
		result.diagnostics.append(exc.to_diagnostic())
		return result
	if machine.config.leak_check:
		result.leaks = ecx.memory.leak_report(machine.may_leak)
		for alloc_id in result.leaks:
			alloc = ecx.memory.get(alloc_id)
			result.diagnostics.append(
				Diagnostic(
					message=f"memory leaked: alloc{alloc_id} ({alloc.kind.name}, {alloc.size} bytes)",
					code=FaultKind.MEMORY_LEAK.name,
					phase="leak-check",
				)
			)
	logger.debug("run of %s finished after %d steps", entry, ecx.steps)
	return result


__all__ = ["RunResult", "run_checked"]
