# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Evaluation context: the engine that steps MIR.

InterpCx owns the Memory, the call stack and the caches (vtables, statics,
literals) of one evaluation. It evaluates places and operands, moves values
between locals and memory, and drives execution one statement or
terminator at a time:

  - `step()` executes exactly one statement or terminator and returns
    whether there is more to do;
  - `run()` steps until the outermost frame returns.

Any InterpError raised while stepping records the MIR span, unwinds every
frame (running its cleanup but never its return write), moves the engine
to FAULTED and propagates to the caller. An InternalInvariantViolation
gets the same span, unwinding and FAULTED state but is re-raised as the
engine defect it is.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from mirvm.core.layout import Abi, Layout, LayoutCx, LayoutError, TagEncoding
from mirvm.core.span import Span
from mirvm.core.target import TargetSpec
from mirvm.core.types_core import TypeId, TypeKind
from mirvm.mir import mir_nodes as M
from .errors import FaultKind, InternalInvariantViolation, InterpError, ResourceExhaustion, bug, ub, unsupported
from .frame import EngineState, Frame, Local, LocalState, StackPopCleanup
from .machine import CheckedMachine, Machine
from .memory import Memory, MemoryKind
from .operand import Immediate, OpTy
from .place import LocalPlace, MemPlace, PlaceTy
from .pointer import AllocId, Pointer
from .primval import PrimVal, int_kind
from .value import ByRef, ByVal, ByValPair, Value


logger = logging.getLogger(__name__)


def _align_to(offset: int, align: int) -> int:
	return (offset + align - 1) // align * align


class InterpCx:
	"""One evaluation: memory, stack, and the program being evaluated."""

	def __init__(
		self,
		program: M.Program,
		machine: Machine | None = None,
		target: TargetSpec | None = None,
	) -> None:
		self.program = program
		self.types = program.types
		self.machine = machine if machine is not None else CheckedMachine()
		self.config = self.machine.config
		self.target = target if target is not None else TargetSpec()
		self.layouts = LayoutCx(self.types, self.target)
		self.memory = Memory(self.target, check_alignment=self.config.check_alignment)
		self.stack: List[Frame] = []
		self.state = EngineState.TERMINATED
		self.steps = 0
		self.fault: Optional[InterpError] = None
		self.current_span = Span()
		# (type, trait) -> vtable, and the reverse map used to validate vtables
		self.vtables: Dict[Tuple[TypeId, str], Pointer] = {}
		self.vtable_owners: Dict[AllocId, Tuple[TypeId, str]] = {}
		self.statics: Dict[str, Pointer] = {}
		self._statics_in_progress: Set[str] = set()
		self._literals: Dict[bytes, Pointer] = {}

	# Types and layouts

	def layout_of(self, ty: TypeId) -> Layout:
		try:
			return self.layouts.layout_of(ty)
		except LayoutError as exc:
			bug(f"no layout for {self.types.display(ty)}: {exc}")

	def usize(self, value: int) -> PrimVal:
		return PrimVal.from_uint(value, self.memory.pointer_size())

	def isize(self, value: int) -> PrimVal:
		return PrimVal.from_int(value, self.memory.pointer_size())

	def zst_value(self, layout: Layout) -> Value:
		"""Zero-sized values live at a dangling, well-aligned address."""
		return ByRef(Pointer.from_int(layout.align))

	def size_and_align_of(self, layout: Layout, meta: Optional[PrimVal]) -> Tuple[int, int]:
		"""Dynamic size and alignment; `meta` is needed for unsized layouts."""
		if not layout.unsized:
			return layout.size, layout.align
		if meta is None:
			bug(f"unsized type {self.types.display(layout.ty)} without metadata")
		kind = self.types.kind(layout.ty)
		if kind in (TypeKind.SLICE, TypeKind.STR):
			assert layout.elem is not None
			elem = self.layout_of(layout.elem)
			return meta.to_u64() * elem.size, elem.align
		if kind is TypeKind.DYN:
			from .traits import read_size_and_align

			return read_size_and_align(self, meta.to_ptr())
		# struct with an unsized tail
		tail = layout.fields[-1]
		tail_size, tail_align = self.size_and_align_of(self.layout_of(tail.ty), meta)
		align = max(layout.align, tail_align)
		offset = _align_to(tail.offset, tail_align)
		return _align_to(offset + tail_size, align), align

	# Stack

	@property
	def frame(self) -> Frame:
		if not self.stack:
			bug("no active frame")
		return self.stack[-1]

	def function(self, name: str) -> M.MirFunc:
		func = self.program.functions.get(name)
		if func is None:
			bug(f"no MIR for function {name!r}")
		return func

	def push_frame(
		self,
		func: M.MirFunc,
		args: Sequence[OpTy],
		return_place: Optional[PlaceTy],
		return_to: Optional[M.BlockId],
		cleanup: StackPopCleanup = StackPopCleanup.GOTO,
		static: Optional[str] = None,
	) -> Frame:
		"""Enter `func`: create its locals and bind `args` to locals 1..=n."""
		if len(self.stack) >= self.config.stack_limit:
			raise ResourceExhaustion(
				FaultKind.STACK_OVERFLOW,
				f"stack limit of {self.config.stack_limit} frames exceeded calling {func.name}",
			)
		if len(args) != func.arg_count:
			bug(f"{func.name} takes {func.arg_count} arguments, {len(args)} were bound")
		if not func.blocks:
			bug(f"{func.name} has no basic blocks")
		locals_: List[Local] = []
		for decl in func.locals:
			layout = self.layout_of(decl.ty)
			local = Local(layout)
			if layout.is_zst:
				local.state = LocalState.LIVE
				local.value = self.zst_value(layout)
			locals_.append(local)
		frame = Frame(func, locals_, return_place, return_to, cleanup, static)
		self.stack.append(frame)
		index = len(self.stack) - 1
		for i, arg in enumerate(args):
			self.copy_op(arg, PlaceTy(LocalPlace(index, i + 1), locals_[i + 1].layout))
		self.state = EngineState.FRAME_ENTRY
		logger.debug("push frame #%d %s", index, func.name)
		return frame

	def pop_frame(self, unwinding: bool = False) -> None:
		"""
		Leave the current frame.

		On a normal return the return local is written to the caller's
		destination first; when unwinding only the cleanup runs.
		"""
		frame = self.frame
		index = len(self.stack) - 1
		if not unwinding and frame.return_place is not None:
			ret = self.place_to_op(PlaceTy(LocalPlace(index, M.RETURN_PLACE), frame.locals[M.RETURN_PLACE].layout))
			self.write_value(self.read_value(ret), frame.return_place)
		self.stack.pop()
		for alloc_id in frame.allocations:
			if self.memory.is_live(alloc_id):
				self.memory.deallocate(Pointer(alloc_id, 0), MemoryKind.STACK)
		logger.debug("pop frame #%d %s%s", index, frame.func.name, " (unwinding)" if unwinding else "")
		if frame.cleanup is StackPopCleanup.MARK_STATIC:
			self._finish_static(frame, unwinding)
		elif frame.cleanup is StackPopCleanup.GOTO and not unwinding:
			if frame.return_to is None:
				ub(FaultKind.UNREACHABLE, f"diverging function {frame.func.name} returned")
			self.goto_block(frame.return_to)
		if unwinding:
			return
		self.state = EngineState.FRAME_EXIT if self.stack else EngineState.TERMINATED

	def _finish_static(self, frame: Frame, unwinding: bool) -> None:
		from .intern import InternKind, intern_const_alloc_recursive

		name = frame.static
		assert name is not None
		self._statics_in_progress.discard(name)
		if unwinding:
			ptr = self.statics.pop(name, None)
			if ptr is not None and self.memory.is_live(ptr.alloc_id):
				self.memory.deallocate(ptr, MemoryKind.STACK)
			return
		sdef = self.program.statics[name]
		assert frame.return_place is not None
		kind = InternKind.STATIC_MUT if sdef.mutable else InternKind.STATIC
		intern_const_alloc_recursive(self, kind, frame.return_place.mplace, frame.return_place.layout)

	def unwind(self) -> None:
		while self.stack:
			self.pop_frame(unwinding=True)

	def goto_block(self, target: M.BlockId) -> None:
		frame = self.frame
		if not 0 <= target < len(frame.func.blocks):
			bug(f"{frame.func.name} has no block bb{target}")
		frame.block = target
		frame.stmt = 0

	# Stepping

	def step(self) -> bool:
		"""Execute one statement or terminator; False once evaluation is over."""
		if self.state in (EngineState.TERMINATED, EngineState.FAULTED) or not self.stack:
			return False
		try:
			self._step_inner()
		except InterpError as err:
			err.with_span(self.current_span)
			self._fault(err)
			raise
		except InternalInvariantViolation as exc:
			exc.with_span(self.current_span)
			logger.debug("engine defect at %s: %s", exc.span, exc)
			self.unwind()
			self.state = EngineState.FAULTED
			raise
		return self.state is not EngineState.TERMINATED

	def run(self) -> None:
		while self.step():
			pass

	def _step_inner(self) -> None:
		from .step import eval_statement
		from .terminator import eval_terminator

		self.steps += 1
		limit = self.config.step_limit
		if limit is not None and self.steps > limit:
			raise ResourceExhaustion(FaultKind.STEP_LIMIT, f"step limit of {limit} exceeded")
		self.state = EngineState.STEPPING
		frame = self.frame
		if not 0 <= frame.block < len(frame.func.blocks):
			bug(f"{frame.func.name} has no block bb{frame.block}")
		block = frame.func.blocks[frame.block]
		self.current_span = frame.span
		if frame.stmt < len(block.statements):
			eval_statement(self, block.statements[frame.stmt])
			frame.stmt += 1
			return
		if block.terminator is None:
			bug(f"bb{frame.block} of {frame.func.name} has no terminator")
		eval_terminator(self, block.terminator)

	def _fault(self, err: InterpError) -> None:
		logger.debug("fault %s at %s", err.kind.name, err.span)
		self.fault = err
		self.unwind()
		self.state = EngineState.FAULTED

	# Statics and literals

	def eval_static(self, name: str) -> PlaceTy:
		"""Place of static `name`, running its initializer on first use."""
		sdef = self.program.statics.get(name)
		if sdef is None:
			bug(f"no static named {name!r}")
		layout = self.layout_of(sdef.ty)
		ptr = self.statics.get(name)
		if ptr is not None:
			if name in self._statics_in_progress:
				unsupported(f"static {name!r} refers to itself during its initialization")
			return PlaceTy(MemPlace(ptr, layout.align), layout)
		ptr = self.memory.allocate(layout.size, layout.align, MemoryKind.STACK)
		self.statics[name] = ptr
		self._statics_in_progress.add(name)
		place = PlaceTy(MemPlace(ptr, layout.align), layout)
		depth = len(self.stack)
		saved = self.current_span
		self.push_frame(self.function(sdef.init), [], place, None, StackPopCleanup.MARK_STATIC, static=name)
		while len(self.stack) > depth:
			self._step_inner()
		self.current_span = saved
		self.state = EngineState.STEPPING
		return place

	def allocate_literal(self, data: bytes) -> Pointer:
		ptr = self._literals.get(data)
		if ptr is None:
			ptr = self.memory.allocate_bytes(data, kind=MemoryKind.GLOBAL)
			self._literals[data] = ptr
		return ptr

	# Locals

	def _local(self, place: LocalPlace) -> Local:
		return self.stack[place.frame].locals[place.local]

	def access_local(self, place: LocalPlace) -> Value:
		local = self._local(place)
		if local.state is LocalState.LIVE:
			assert local.value is not None
			return local.value
		if local.state is LocalState.MOVED:
			ub(FaultKind.DEAD_LOCAL, f"use of moved-out local _{place.local}")
		ub(FaultKind.UNINIT_READ, f"use of uninitialized local _{place.local}")

	def _free_local_memory(self, frame: Frame, local: Local) -> None:
		if isinstance(local.value, ByRef) and local.value.ptr.alloc_id in frame.allocations:
			alloc_id = local.value.ptr.alloc_id
			frame.allocations.remove(alloc_id)
			self.memory.deallocate(Pointer(alloc_id, 0), MemoryKind.STACK)

	def storage_live(self, index: M.LocalId) -> None:
		frame = self.frame
		local = frame.locals[index]
		self._free_local_memory(frame, local)
		if local.layout.is_zst:
			local.state, local.value = LocalState.LIVE, self.zst_value(local.layout)
		else:
			local.state, local.value = LocalState.UNINIT, None

	def storage_dead(self, index: M.LocalId) -> None:
		frame = self.frame
		local = frame.locals[index]
		self._free_local_memory(frame, local)
		local.state, local.value = LocalState.UNINIT, None

	def force_allocation(self, place: PlaceTy) -> PlaceTy:
		"""Give a local an address (stack memory), keeping its current value."""
		if isinstance(place.place, MemPlace):
			return place
		frame = self.stack[place.place.frame]
		local = self._local(place.place)
		if isinstance(local.value, ByRef):
			if local.state is not LocalState.LIVE:
				local.state = LocalState.LIVE
			return PlaceTy(MemPlace(local.value.ptr, local.layout.align), place.layout, place.variant)
		ptr = self.memory.allocate(local.layout.size, local.layout.align, MemoryKind.STACK)
		frame.allocations.append(ptr.alloc_id)
		if local.state is LocalState.LIVE and local.value is not None:
			self.write_value_to_ptr(local.value, ptr, local.layout)
		local.value = ByRef(ptr)
		local.state = LocalState.LIVE
		return PlaceTy(MemPlace(ptr, local.layout.align), place.layout, place.variant)

	def force_mplace(self, place: PlaceTy) -> MemPlace:
		return self.force_allocation(place).mplace

	# Places

	def eval_place(self, place: M.Place) -> PlaceTy:
		index = len(self.stack) - 1
		frame = self.frame
		if not 0 <= place.local < len(frame.locals):
			bug(f"{frame.func.name} has no local _{place.local}")
		pt = PlaceTy(LocalPlace(index, place.local), frame.locals[place.local].layout)
		for elem in place.projection:
			pt = self.place_projection(pt, elem)
		return pt

	def place_projection(self, base: PlaceTy, elem: M.ProjectionElem) -> PlaceTy:
		if isinstance(elem, M.Deref):
			if not self.types.is_pointer(base.layout.ty):
				bug(f"deref of non-pointer type {self.types.display(base.layout.ty)}")
			value = self.read_value(self.place_to_op(base))
			return self.ref_to_place(value, self.types.pointee(base.layout.ty))
		if isinstance(elem, M.Field):
			return self.place_field(base, elem.index, elem.ty)
		if isinstance(elem, M.Index):
			idx_place = PlaceTy(LocalPlace(len(self.stack) - 1, elem.local), self.frame.locals[elem.local].layout)
			idx = self.read_scalar(self.place_to_op(idx_place)).to_u64()
			return self.place_index(base, idx)
		if isinstance(elem, M.ConstantIndex):
			length = self.place_len(base)
			idx = length - elem.offset if elem.from_end else elem.offset
			return self.place_index(base, idx)
		if isinstance(elem, M.Subslice):
			return self.place_subslice(base, elem)
		if isinstance(elem, M.Downcast):
			if self.types.kind(base.layout.ty) is not TypeKind.ENUM:
				bug(f"downcast of non-enum type {self.types.display(base.layout.ty)}")
			return base.with_variant(elem.variant)
		bug(f"unknown projection {type(elem).__name__}")

	def ref_to_place(self, value: Value, pointee: TypeId) -> PlaceTy:
		"""Place a (thin or fat) pointer value points to."""
		layout = self.layout_of(pointee)
		if isinstance(value, ByValPair):
			return PlaceTy(MemPlace(value.a.to_ptr(), layout.align, value.b), layout)
		if layout.unsized:
			bug(f"thin pointer to unsized type {self.types.display(pointee)}")
		return PlaceTy(MemPlace(value.read_ptr(self.memory), layout.align), layout)

	def place_field(self, base: PlaceTy, index: int, field_ty: TypeId) -> PlaceTy:
		fields = base.layout.field_layouts(base.variant)
		if not 0 <= index < len(fields):
			bug(f"{self.types.display(base.layout.ty)} has no field {index}")
		field_layout = self.layout_of(field_ty)
		if base.layout.is_zst and field_layout.is_zst:
			return PlaceTy(MemPlace(Pointer.from_int(field_layout.align), field_layout.align), field_layout)
		mp = self.force_mplace(base)
		offset = fields[index].offset
		meta = None
		align = field_layout.align
		if field_layout.unsized:
			meta = mp.meta
			if self.types.kind(self.types.unsized_tail(field_ty)) is TypeKind.DYN:
				_, align = self.size_and_align_of(field_layout, meta)
				offset = _align_to(offset, align)
		return PlaceTy(mp.offset(offset, align, meta), field_layout)

	def place_len(self, place: PlaceTy) -> int:
		if place.layout.count is not None:
			return place.layout.count
		if place.layout.unsized and isinstance(place.place, MemPlace) and place.place.meta is not None:
			return place.place.meta.to_u64()
		bug(f"length of non-array type {self.types.display(place.layout.ty)}")

	def place_index(self, base: PlaceTy, idx: int) -> PlaceTy:
		length = self.place_len(base)
		if not 0 <= idx < length:
			ub(FaultKind.OUT_OF_BOUNDS, f"index out of bounds: the length is {length} but the index is {idx}")
		assert base.layout.elem is not None
		elem = self.layout_of(base.layout.elem)
		mp = self.force_mplace(base)
		return PlaceTy(mp.offset(idx * elem.size, elem.align), elem)

	def place_subslice(self, base: PlaceTy, elem: M.Subslice) -> PlaceTy:
		length = self.place_len(base)
		new_len = length - elem.start - elem.end if elem.from_end else elem.end - elem.start
		if elem.start > length or new_len < 0 or elem.start + new_len > length:
			ub(FaultKind.OUT_OF_BOUNDS, f"subslice {elem.start}..{elem.end} out of bounds of length {length}")
		assert base.layout.elem is not None
		elem_layout = self.layout_of(base.layout.elem)
		mp = self.force_mplace(base)
		if base.layout.unsized:
			return PlaceTy(mp.offset(elem.start * elem_layout.size, mp.align, self.usize(new_len)), base.layout)
		array = self.layout_of(self.types.new_array(base.layout.elem, new_len))
		return PlaceTy(mp.offset(elem.start * elem_layout.size, array.align), array)

	# Operands

	def place_to_op(self, place: PlaceTy) -> OpTy:
		if isinstance(place.place, MemPlace):
			return OpTy.indirect(place.place, place.layout)
		value = self.access_local(place.place)
		if isinstance(value, ByRef) and not place.layout.is_zst:
			return OpTy.indirect(MemPlace(value.ptr, place.layout.align), place.layout)
		return OpTy.immediate(value, place.layout)

	def eval_operand(self, operand: M.Operand) -> OpTy:
		if isinstance(operand, M.Copy):
			return self.place_to_op(self.eval_place(operand.place))
		if isinstance(operand, M.Move):
			op = self.place_to_op(self.eval_place(operand.place))
			if not operand.place.projection:
				local = self.frame.locals[operand.place.local]
				if not local.layout.is_zst:
					if isinstance(op.op, Immediate):
						local.value = None
					local.state = LocalState.MOVED
			return op
		if isinstance(operand, M.Constant):
			return self.const_to_op(operand)
		bug(f"unknown operand {type(operand).__name__}")

	def const_to_op(self, const: M.Constant) -> OpTy:
		layout = self.layout_of(const.ty)
		if layout.is_zst:
			return OpTy.immediate(self.zst_value(layout), layout)
		td = self.types.get(const.ty)
		value = const.value
		kind = td.kind
		if kind is TypeKind.BOOL:
			prim = PrimVal.from_bool(bool(value))
		elif kind is TypeKind.CHAR:
			prim = PrimVal.from_char(value)  # type: ignore[arg-type]
		elif kind in (TypeKind.INT, TypeKind.UINT):
			if not isinstance(value, int):
				bug(f"integer constant of type {td.name} holds {value!r}")
			bits = layout.size * 8
			if not -(1 << (bits - 1)) <= value < (1 << bits):
				bug(f"constant {value} does not fit {td.name}")
			prim = PrimVal.from_bits(value, int_kind(layout.size, kind is TypeKind.INT))
		elif kind is TypeKind.FLOAT:
			prim = PrimVal.from_float(float(value), layout.size)  # type: ignore[arg-type]
		elif kind is TypeKind.FN_PTR:
			if not isinstance(value, M.FnRef):
				bug(f"fn pointer constant holds {value!r}")
			prim = PrimVal.from_fn_ptr(self.memory.create_fn_alloc(value.name))
		elif kind in (TypeKind.REF, TypeKind.RAW_PTR):
			if isinstance(value, M.StaticRef):
				return OpTy.immediate(self.force_mplace(self.eval_static(value.name)).to_ref(), layout)
			if isinstance(value, str):
				value = value.encode("utf-8")
			if isinstance(value, bytes):
				ptr = self.allocate_literal(value)
				if layout.abi is Abi.SCALAR_PAIR:
					return OpTy.immediate(ByValPair(PrimVal.from_ptr(ptr), self.usize(len(value))), layout)
				return OpTy.immediate(ByVal(PrimVal.from_ptr(ptr)), layout)
			if value is None:
				prim = PrimVal.from_ptr(Pointer.null())
			elif isinstance(value, int):
				prim = PrimVal.from_ptr(Pointer.from_int(value))
			else:
				bug(f"pointer constant holds {value!r}")
		elif kind is TypeKind.ENUM and layout.abi is Abi.SCALAR and layout.tag is not None:
			if not isinstance(value, int) or not 0 <= value < len(layout.variants):
				bug(f"enum constant of {td.name} must be a variant index, got {value!r}")
			scalar = layout.tag.scalar
			prim = PrimVal.from_bits(layout.variants[value].discr, int_kind(scalar.size, scalar.signed))
		else:
			bug(f"no constant encoding for type {td.name}")
		return OpTy.immediate(ByVal(prim), layout)

	# Reading and writing values

	def read_value(self, op: OpTy) -> Value:
		if isinstance(op.op, Immediate):
			return op.op.value
		return self.read_value_at(op.op.mplace.ptr, op.layout)

	def read_value_at(self, ptr: Pointer, layout: Layout) -> Value:
		if layout.abi is Abi.UNINHABITED:
			ub(FaultKind.INVALID_VALUE, f"reading a value of uninhabited type {self.types.display(layout.ty)}")
		if layout.unsized:
			bug(f"reading unsized type {self.types.display(layout.ty)} by value")
		if layout.is_zst:
			self.memory.check_ptr_access(ptr, 0, layout.align)
			return ByRef(ptr)
		if layout.abi is Abi.SCALAR:
			return ByVal(self.memory.read_primval(ptr, layout.scalar))
		if layout.abi is Abi.SCALAR_PAIR:
			first, second = layout.scalars
			return ByValPair(
				self.memory.read_primval(ptr, first),
				self.memory.read_primval(ptr.offset_by(layout.pair_offset), second),
			)
		self.memory.check_ptr_access(ptr, layout.size, layout.align)
		return ByRef(ptr)

	def read_scalar(self, op: OpTy) -> PrimVal:
		value = self.read_value(op)
		if not isinstance(value, ByVal):
			bug(f"expected a scalar of type {self.types.display(op.layout.ty)}, got {value}")
		return value.prim

	def to_immediate(self, value: Value, layout: Layout) -> Value:
		"""Value in the representation `layout` asks for when held in a local."""
		if isinstance(value, ByRef):
			return self.read_value_at(value.ptr, layout)
		if layout.abi is Abi.SCALAR and isinstance(value, ByVal):
			return value
		if layout.abi is Abi.SCALAR_PAIR and isinstance(value, ByValPair):
			return value
		bug(f"{value} does not match the {layout.abi.name} layout of {self.types.display(layout.ty)}")

	def write_value(self, value: Value, dest: PlaceTy) -> None:
		layout = dest.layout
		if isinstance(dest.place, MemPlace):
			self.write_value_to_ptr(value, dest.place.ptr, layout)
			return
		frame = self.stack[dest.place.frame]
		local = self._local(dest.place)
		if layout.is_zst:
			local.state, local.value = LocalState.LIVE, self.zst_value(layout)
			return
		if isinstance(local.value, ByRef):
			self.write_value_to_ptr(value, local.value.ptr, layout)
			local.state = LocalState.LIVE
			return
		if layout.abi in (Abi.SCALAR, Abi.SCALAR_PAIR):
			local.value = self.to_immediate(value, layout)
			local.state = LocalState.LIVE
			return
		ptr = self.memory.allocate(layout.size, layout.align, MemoryKind.STACK)
		frame.allocations.append(ptr.alloc_id)
		self.write_value_to_ptr(value, ptr, layout)
		local.value = ByRef(ptr)
		local.state = LocalState.LIVE

	def write_value_to_ptr(self, value: Value, ptr: Pointer, layout: Layout) -> None:
		if layout.is_zst:
			self.memory.check_ptr_access(ptr, 0, layout.align)
			return
		if isinstance(value, ByRef):
			self.memory.copy(value.ptr, ptr, layout.size, src_align=layout.align, dest_align=layout.align)
			return
		if isinstance(value, ByVal):
			if layout.abi is not Abi.SCALAR:
				bug(f"writing {value} to a {layout.abi.name} value of {self.types.display(layout.ty)}")
			self.memory.write_primval(ptr, value.prim, layout.scalar.size)
			return
		if isinstance(value, ByValPair):
			if layout.abi is not Abi.SCALAR_PAIR:
				bug(f"writing {value} to a {layout.abi.name} value of {self.types.display(layout.ty)}")
			first, second = layout.scalars
			self.memory.write_primval(ptr, value.a, first.size)
			self.memory.write_primval(ptr.offset_by(layout.pair_offset), value.b, second.size)
			return
		bug(f"unknown value representation {value!r}")

	def copy_op(self, src: OpTy, dest: PlaceTy) -> None:
		self.write_value(self.read_value(src), dest)

	# Enums

	def read_discriminant(self, op: OpTy) -> Tuple[int, int]:
		"""`(discriminant, variant index)` of an enum value; non-enums yield (0, 0)."""
		layout = op.layout
		td = self.types.get(layout.ty)
		if td.kind is not TypeKind.ENUM:
			return 0, 0
		if layout.tag is None:
			ub(FaultKind.INVALID_VALUE, f"reading the discriminant of uninhabited enum {td.name}")
		tag = layout.tag
		if isinstance(op.op, Immediate):
			value = op.op.value
			if not isinstance(value, ByVal) or tag.offset != 0:
				bug(f"immediate {value} cannot hold the tag of {td.name}")
			prim = value.prim
		else:
			prim = self.memory.read_primval(op.op.mplace.ptr.offset_by(tag.offset), tag.scalar)
		if tag.encoding is TagEncoding.NICHE:
			assert tag.dataful_variant is not None and tag.niche_variant is not None
			if prim.is_undef:
				prim.to_bits()
			if prim.is_ptr and prim.ptr is not None and prim.ptr.has_provenance:
				idx = tag.dataful_variant
			else:
				idx = tag.niche_variant if prim.to_bits() == 0 else tag.dataful_variant
			return layout.variants[idx].discr, idx
		raw = prim.to_int_value()
		for idx, variant in enumerate(layout.variants):
			if variant.discr == raw:
				if variant.uninhabited:
					ub(FaultKind.INVALID_DISCRIMINANT, f"{td.name} holds uninhabited variant {variant.name}")
				return raw, idx
		ub(FaultKind.INVALID_DISCRIMINANT, f"enum {td.name} has no variant with discriminant {raw}")

	def write_discriminant(self, dest: PlaceTy, variant: int) -> None:
		layout = dest.layout
		td = self.types.get(layout.ty)
		if td.kind is not TypeKind.ENUM:
			if variant != 0:
				bug(f"setting variant {variant} of non-enum {td.name}")
			return
		if not 0 <= variant < len(layout.variants) or layout.tag is None:
			bug(f"{td.name} has no variant {variant}")
		vl = layout.variants[variant]
		if vl.uninhabited:
			ub(FaultKind.INVALID_VALUE, f"writing uninhabited variant {vl.name} of {td.name}")
		tag = layout.tag
		if tag.encoding is TagEncoding.NICHE:
			if variant == tag.niche_variant:
				if tag.scalar.is_pointer:
					zero = PrimVal.from_ptr(Pointer.null())
				else:
					zero = PrimVal.from_bits(0, int_kind(tag.scalar.size, tag.scalar.signed))
				self.write_value(ByVal(zero), PlaceTy(dest.place, layout))
			return
		prim = PrimVal.from_bits(vl.discr, int_kind(tag.scalar.size, tag.scalar.signed))
		if layout.abi is Abi.SCALAR:
			self.write_value(ByVal(prim), PlaceTy(dest.place, layout))
			return
		mp = self.force_mplace(dest)
		self.memory.write_primval(mp.ptr.offset_by(tag.offset), prim, tag.scalar.size)

	# Pointer arithmetic

	def ptr_offset_inbounds(self, ptr: Pointer, delta: int) -> Pointer:
		"""`ptr + delta` where both ends must lie in (or one past) the same allocation."""
		if delta == 0:
			return ptr
		if not ptr.has_provenance:
			ub(FaultKind.POINTER_ARITHMETIC, f"in-bounds offset of {delta} bytes on pointer {ptr} without provenance")
		alloc = self.memory.get(ptr.alloc_id)
		new = ptr.offset_by(delta)
		if not 0 <= new.offset <= alloc.size:
			ub(
				FaultKind.POINTER_ARITHMETIC,
				f"offset of {delta} bytes from {ptr} leaves alloc{ptr.alloc_id} (size {alloc.size})",
			)
		return new

	def ptr_wrapping_offset(self, ptr: Pointer, delta: int) -> Pointer:
		offset = (ptr.offset + delta) & self.target.usize_max
		return Pointer(ptr.alloc_id, offset)


__all__ = ["InterpCx"]
