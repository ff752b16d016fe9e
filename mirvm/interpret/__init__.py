# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
mirvm.interpret: memory model, value layer and evaluation engine.

Modules (leaves first):
  - pointer, primval: pointers with provenance and tagged scalars
  - memory: allocations, relocations, checked reads and writes
  - value, place, operand: ByRef/ByVal/ByValPair and where values live
  - eval_context, step, terminator, operator, cast: the engine
  - machine: policy hooks and configuration
  - intrinsics, traits: built-in functions and trait-object vtables
  - visitor, validity, intern: value walks, checking and constant promotion
  - const_eval, run: the two drivers
"""

from .const_eval import ConstEvalResult, eval_const
from .errors import (
	FaultKind,
	InternalInvariantViolation,
	InternError,
	InterpError,
	InvalidValue,
	ResourceExhaustion,
	UndefinedBehavior,
	Unsupported,
)
from .eval_context import InterpCx
from .frame import EngineState
from .intern import InternKind
from .machine import CheckedMachine, ConstEvalMachine, Machine, MachineConfig
from .memory import Allocation, Memory, MemoryKind
from .pointer import Pointer
from .primval import PrimVal, PrimValKind
from .run import RunResult, run_checked
from .value import ByRef, ByVal, ByValPair, Value

__all__ = [
	"Allocation",
	"ByRef",
	"ByVal",
	"ByValPair",
	"CheckedMachine",
	"ConstEvalMachine",
	"ConstEvalResult",
	"EngineState",
	"FaultKind",
	"InternError",
	"InternKind",
	"InternalInvariantViolation",
	"InterpCx",
	"InterpError",
	"InvalidValue",
	"Machine",
	"MachineConfig",
	"Memory",
	"MemoryKind",
	"Pointer",
	"PrimVal",
	"PrimValKind",
	"ResourceExhaustion",
	"RunResult",
	"UndefinedBehavior",
	"Unsupported",
	"Value",
	"eval_const",
	"run_checked",
]
