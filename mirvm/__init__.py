# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
mirvm package: an abstract machine for typed MIR.

Subpackages:
  core: target description, type table, layout oracle, spans/diagnostics
  mir: MIR node definitions and a small builder
  interpret: memory model, value layer, evaluation engine and drivers
"""

__all__ = ["core", "mir", "interpret"]
