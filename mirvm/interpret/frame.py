# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Stack frames and the engine state machine.

    STEPPING --(Call)--> FRAME_ENTRY --> STEPPING
    STEPPING --(Return)--> FRAME_EXIT --> STEPPING     (caller resumes)
    STEPPING --(Return of the last frame)--> TERMINATED
    any --(InterpError)--> FAULTED                      (all frames unwound)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import List, Optional

from mirvm.core.layout import Layout
from mirvm.core.span import Span
from mirvm.mir.mir_nodes import BlockId, MirFunc
from .pointer import AllocId
from .place import PlaceTy
from .value import Value


class EngineState(Enum):
	STEPPING = auto()
	FRAME_ENTRY = auto()
	FRAME_EXIT = auto()
	FAULTED = auto()
	TERMINATED = auto()


class LocalState(Enum):
	UNINIT = auto()
	LIVE = auto()
	MOVED = auto()


@dataclass
class Local:
	"""
	One local of a frame.

	`value` is an immediate (ByVal/ByValPair) until the local needs an
	address; from then on it is ByRef to stack memory owned by the frame.
	A ByRef value survives MOVED/UNINIT so the memory is reused on the next
	write.
	"""
	layout: Layout
	state: LocalState = LocalState.UNINIT
	value: Optional[Value] = None


class StackPopCleanup(Enum):
	GOTO = auto()  # resume the caller at `return_to`
	NONE = auto()  # outermost frame of a driver
	MARK_STATIC = auto()  # intern the static the frame initialized


@dataclass
class Frame:
	func: MirFunc
	locals: List[Local]
	return_place: Optional[PlaceTy]
	return_to: Optional[BlockId]
	cleanup: StackPopCleanup
	static: Optional[str] = None  # MARK_STATIC only
	block: BlockId = 0
	stmt: int = 0
	# stack memory handed out to locals; freed when the frame is popped
	allocations: List[AllocId] = field(default_factory=list)

	@property
	def span(self) -> Span:
		return Span(self.func.name, self.block, self.stmt)


__all__ = ["EngineState", "LocalState", "Local", "StackPopCleanup", "Frame"]
