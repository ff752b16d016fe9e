# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
mirvm.core: collaborators the interpreter consumes through narrow interfaces.

Modules:
  - span: MIR location (function/block/statement) attached to faults
  - diagnostics: Diagnostic record surfaced to drivers
  - target: pointer width + byte order (data-layout strings parsed with lark)
  - types_core: TypeId/TypeTable primitives and function signatures
  - layout: the layout oracle (size/align/abi/field offsets per TypeId)
"""

__all__ = [
	"span",
	"diagnostics",
	"target",
	"types_core",
	"layout",
]
