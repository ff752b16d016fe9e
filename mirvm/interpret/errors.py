# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Fault classes raised by the interpreter.

Two disjoint families:

  - InterpError: something the *evaluated program* did (out-of-bounds access,
    uninitialized read, dangling pointer, overflow, bad discriminant, ...),
    or a resource/policy limit (step budget, stack depth, I/O during
    const-eval). The step loop catches these, records the MIR span, unwinds
    the stack and hands the fault to the driver.

  - InternalInvariantViolation: the engine asked a Value for a
    representation it cannot supply even though the layout oracle should
    have prevented the request. This is an engine/producer bug; it derives
    from AssertionError like the MIR invariant checks of the compiler. The
    step loop records its span and unwinds the stack, then lets it
    propagate; it is never turned into a program fault.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import NoReturn

from mirvm.core.diagnostics import Diagnostic
from mirvm.core.span import Span


class FaultKind(Enum):
	# memory
	OUT_OF_BOUNDS = auto()
	MISALIGNED = auto()
	UNINIT_READ = auto()
	DANGLING_POINTER = auto()
	NULL_POINTER = auto()
	INVALID_POINTER_READ = auto()
	POINTER_AS_BYTES = auto()
	WRITE_TO_READONLY = auto()
	OVERLAPPING_COPY = auto()
	DOUBLE_FREE = auto()
	DEALLOC_WRONG_KIND = auto()
	INVALID_FN_POINTER = auto()
	MEMORY_LEAK = auto()
	# arithmetic
	OVERFLOW = auto()
	DIVISION_BY_ZERO = auto()
	INVALID_SHIFT = auto()
	INEXACT_DIVISION = auto()
	POINTER_ARITHMETIC = auto()
	# values and control flow
	INVALID_DISCRIMINANT = auto()
	INVALID_VALUE = auto()
	SIGNATURE_MISMATCH = auto()
	DEAD_LOCAL = auto()
	UNREACHABLE = auto()
	ASSERT_FAILED = auto()
	ABORTED = auto()
	TRANSMUTE_SIZE = auto()
	# interning
	DANGLING_IN_CONST = auto()
	INTERIOR_MUT_IN_CONST = auto()
	HEAP_IN_CONST = auto()
	# policy / resources
	UNSUPPORTED = auto()
	NON_CONST_CALL = auto()
	STEP_LIMIT = auto()
	STACK_OVERFLOW = auto()
	# engine defect surfaced to a host that opted into isolation
	INTERNAL = auto()


class InterpError(Exception):
	"""A fault attributable to the evaluated program or to a machine limit."""

	phase = "interpret"

	def __init__(self, kind: FaultKind, message: str, span: Span | None = None) -> None:
		super().__init__(message)
		self.kind = kind
		self.message = message
		self.span = span if span is not None else Span()

	def with_span(self, span: Span) -> "InterpError":
		"""Attach the MIR location unless an inner frame already did."""
		if not self.span.is_known:
			self.span = span
		return self

	def to_diagnostic(self) -> Diagnostic:
		return Diagnostic(
			message=self.message,
			code=self.kind.name,
			phase=self.phase,
			span=self.span,
		)

	def __str__(self) -> str:
		if self.span.is_known:
			return f"[{self.kind.name}] {self.message} at {self.span}"
		return f"[{self.kind.name}] {self.message}"


class UndefinedBehavior(InterpError):
	"""The program performed an operation with no defined meaning."""


class InvalidValue(UndefinedBehavior):
	"""Raised by the validity checker; `path` names the offending sub-value."""

	phase = "validity"

	def __init__(self, message: str, path: str = "", span: Span | None = None) -> None:
		text = f"{message} at {path}" if path else message
		super().__init__(FaultKind.INVALID_VALUE, text, span)
		self.path = path


class Unsupported(InterpError):
	"""The operation is meaningful but outside what this machine models."""


class ResourceExhaustion(InterpError):
	"""Step budget or stack depth exhausted."""


class InternError(InterpError):
	"""A constant's allocation graph cannot be promoted to permanent storage."""

	phase = "intern"


class InternalInvariantViolation(AssertionError):
	"""An engine defect: a Value was asked for a representation it does not hold."""

	def __init__(self, message: str, span: Span | None = None) -> None:
		super().__init__(message)
		self.span = span if span is not None else Span()

	def with_span(self, span: Span) -> "InternalInvariantViolation":
		if not self.span.is_known:
			self.span = span
		return self

	def to_diagnostic(self) -> Diagnostic:
		return Diagnostic(message=str(self), code=FaultKind.INTERNAL.name, phase="internal", span=self.span)


def ub(kind: FaultKind, message: str) -> NoReturn:
	raise UndefinedBehavior(kind, message)


def unsupported(message: str, kind: FaultKind = FaultKind.UNSUPPORTED) -> NoReturn:
	raise Unsupported(kind, message)


def bug(message: str) -> NoReturn:
	raise InternalInvariantViolation(f"interpreter invariant violation: {message}")


__all__ = [
	"FaultKind",
	"InterpError",
	"UndefinedBehavior",
	"InvalidValue",
	"Unsupported",
	"ResourceExhaustion",
	"InternError",
	"InternalInvariantViolation",
	"ub",
	"unsupported",
	"bug",
]
