# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
MIR definitions consumed by the interpreter.

`mir_nodes` holds the dataclasses, `builder` a small construction helper.
"""

from . import mir_nodes
from .builder import MirBuilder
from .mir_nodes import Program, MirFunc

__all__ = ["mir_nodes", "MirBuilder", "Program", "MirFunc"]
