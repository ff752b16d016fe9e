# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Common diagnostic structure for the interpreter drivers.

Faults raised inside the engine are exceptions; drivers turn them into a
Diagnostic so callers get a plain record: message, fault code, phase, and
the MIR span that triggered it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .span import Span


@dataclass
class Diagnostic:
	"""Represents an interpreter diagnostic (fault/warning)."""

	message: str
	code: str | None = None
	# Optional phase label ("interpret", "validity", "intern", "leak-check").
	phase: str | None = None
	severity: str = "error"
	span: Span = field(default_factory=Span)  # Span() denotes unknown.
	notes: list[str] = field(default_factory=list)

	def __post_init__(self) -> None:
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()

	def format_human(self) -> str:
		head = f"{self.severity}[{self.code}]" if self.code else self.severity
		parts = [f"{head}: {self.message}"]
		if self.span.is_known:
			parts.append(f"  --> {self.span}")
		for note in self.notes:
			parts.append(f"  = note: {note}")
		return "\n".join(parts)


__all__ = ["Diagnostic"]
