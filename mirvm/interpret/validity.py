# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Validity checking: does a value satisfy the invariants of its type?

The checker walks a value field by field following its layout. References
are followed too, but never recursively: each (pointer, type) pair reached
through a reference goes on a worklist with a seen-set, so cyclic and
deeply linked data are checked in bounded stack depth.

Failures raise InvalidValue naming the path to the offending sub-value,
e.g. `.inner.0[3].<deref>`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional, Set, Tuple

from mirvm.core.layout import Abi, Layout, Scalar
from mirvm.core.types_core import TypeKind
from .errors import FaultKind, InvalidValue, UndefinedBehavior, bug
from .memory import MemoryKind
from .operand import Immediate, OpTy
from .place import MemPlace
from .pointer import Pointer
from .primval import PrimVal
from .visitor import ValueVisitor

if TYPE_CHECKING:
	from .eval_context import InterpCx


logger = logging.getLogger(__name__)


class RefTracking:
	"""Worklist of places reached through references, with a seen-set."""

	def __init__(self) -> None:
		self.seen: Set[Tuple[Pointer, int]] = set()
		self.todo: List[Tuple[MemPlace, Layout, str]] = []

	def track(self, mplace: MemPlace, layout: Layout, path: str) -> None:
		key = (mplace.ptr, layout.ty)
		if key in self.seen:
			return
		self.seen.add(key)
		self.todo.append((mplace, layout, path))


def validate_operand(
	ecx: "InterpCx",
	op: OpTy,
	path: str = "",
	ref_tracking: Optional[RefTracking] = None,
	const_mode: bool = False,
) -> None:
	"""
	Check `op` against its type.

	Without `ref_tracking` the whole graph reachable through references is
	checked before returning. With one, referenced places are only queued
	and the caller drains the worklist.
	"""
	drain = ref_tracking is None
	tracking = ref_tracking if ref_tracking is not None else RefTracking()
	visitor = _ValidityVisitor(ecx, tracking, const_mode)
	if isinstance(op.op, Immediate):
		_validate_immediate(visitor, op, path)
	else:
		tracking.seen.add((op.op.mplace.ptr, op.layout.ty))
		visitor.visit_value(op.op.mplace, op.layout, path)
	if drain:
		checked = 0
		while tracking.todo:
			checked += 1
			mplace, layout, sub_path = tracking.todo.pop()
			visitor.visit_value(mplace, layout, sub_path)
		logger.debug("validated %s and %d referenced places", ecx.types.display(op.layout.ty), checked)


def _validate_immediate(visitor: "_ValidityVisitor", op: OpTy, path: str) -> None:
	"""Immediates are spilled to a scratch allocation and checked in memory."""
	ecx = visitor.ecx
	layout = op.layout
	if layout.is_zst:
		if layout.abi is Abi.UNINHABITED:
			raise InvalidValue(f"encountered a value of uninhabited type {ecx.types.display(layout.ty)}", path)
		return
	assert isinstance(op.op, Immediate)
	ptr = ecx.memory.allocate(layout.size, layout.align, MemoryKind.STACK)
	try:
		ecx.write_value_to_ptr(op.op.value, ptr, layout)
		visitor.visit_value(MemPlace(ptr, layout.align), layout, path)
	finally:
		ecx.memory.deallocate(ptr, MemoryKind.STACK)


def _read_scalar(ecx: "InterpCx", ptr: Pointer, scalar: Scalar, path: str) -> PrimVal:
	try:
		prim = ecx.memory.read_primval(ptr, scalar)
	except UndefinedBehavior as exc:
		if exc.kind in (FaultKind.POINTER_AS_BYTES, FaultKind.INVALID_POINTER_READ):
			raise InvalidValue("encountered a partial pointer", path) from exc
		raise
	if prim.is_undef:
		raise InvalidValue("encountered uninitialized bytes", path)
	return prim


class _ValidityVisitor(ValueVisitor):
	def __init__(self, ecx: "InterpCx", tracking: RefTracking, const_mode: bool) -> None:
		super().__init__(ecx)
		self.tracking = tracking
		self.const_mode = const_mode

	def read_variant(self, mp: MemPlace, layout: Layout, path: str) -> int:
		try:
			return super().read_variant(mp, layout, path)
		except UndefinedBehavior as exc:
			raise InvalidValue(f"encountered an invalid enum discriminant ({exc})", path) from exc

	def visit_value(self, mp: MemPlace, layout: Layout, path: str) -> None:
		ecx = self.ecx
		td = ecx.types.get(layout.ty)
		kind = td.kind
		if layout.abi is Abi.UNINHABITED:
			raise InvalidValue(f"encountered a value of uninhabited type {td.name}", path)
		ptr = mp.ptr

		if kind is TypeKind.BOOL:
			prim = _read_scalar(ecx, ptr, layout.scalar, path)
			if prim.is_ptr or prim.bits > 1:
				raise InvalidValue(f"encountered {prim}, but expected a boolean", path)

		elif kind is TypeKind.CHAR:
			prim = _read_scalar(ecx, ptr, layout.scalar, path)
			code = prim.bits
			if prim.is_ptr or code > 0x10FFFF or 0xD800 <= code <= 0xDFFF:
				raise InvalidValue(f"encountered {code:#x}, but expected a valid unicode scalar value", path)

		elif kind in (TypeKind.INT, TypeKind.UINT, TypeKind.FLOAT):
			prim = _read_scalar(ecx, ptr, layout.scalar, path)
			if self.const_mode and prim.is_ptr and prim.ptr is not None and prim.ptr.has_provenance:
				raise InvalidValue("encountered a pointer, but expected plain integer bytes", path)

		elif kind is TypeKind.FN_PTR:
			prim = _read_scalar(ecx, ptr, layout.scalar, path)
			target = prim.to_ptr()
			if not ecx.memory.is_fn_ptr(target):
				raise InvalidValue(f"encountered {target}, but expected a function pointer", path)

		elif kind in (TypeKind.REF, TypeKind.RAW_PTR):
			_validate_pointer(ecx, mp, layout, path, self.tracking, kind is TypeKind.REF)

		elif kind in (TypeKind.UNIT, TypeKind.FN_DEF):
			pass

		elif kind is TypeKind.STR:
			count = mp.meta.to_u64() if mp.meta is not None else 0
			try:
				ecx.memory.read_bytes(ptr, count)
			except UndefinedBehavior as exc:
				raise InvalidValue(f"encountered invalid string data ({exc.kind.name.lower()})", path) from exc

		elif kind in (TypeKind.ARRAY, TypeKind.SLICE, TypeKind.TUPLE, TypeKind.STRUCT, TypeKind.ENUM):
			self.walk_value(mp, layout, path)

		elif kind is TypeKind.DYN:
			bug(f"validating a dyn {td.trait} place without its concrete type")

		else:
			bug(f"no validity rules for {td.name}")


def _validate_pointer(
	ecx: "InterpCx",
	mp: MemPlace,
	layout: Layout,
	path: str,
	tracking: RefTracking,
	is_ref: bool,
) -> None:
	"""Thin or fat pointer: metadata always, the pointee only for references."""
	from .traits import vtable_owner

	types = ecx.types
	pointee_ty = types.pointee(layout.ty)
	if layout.abi is Abi.SCALAR_PAIR:
		first, second = layout.scalars
		data = _read_scalar(ecx, mp.ptr, first, path)
		meta: Optional[PrimVal] = _read_scalar(ecx, mp.ptr.offset_by(layout.pair_offset), second, path)
	else:
		data = _read_scalar(ecx, mp.ptr, layout.scalar, path)
		meta = None
	target = data.to_ptr()
	tail = types.get(types.unsized_tail(pointee_ty))
	deref_layout: Optional[Layout] = ecx.layout_of(pointee_ty)
	deref_meta = meta
	if meta is not None and tail.kind is TypeKind.DYN:
		vtable = meta.to_ptr()
		try:
			concrete, _ = vtable_owner(ecx, vtable)
		except UndefinedBehavior as exc:
			raise InvalidValue(f"encountered {vtable}, but expected a vtable pointer", path) from exc
		# only a bare `dyn Trait` pointee is re-checked as its concrete type
		if types.kind(pointee_ty) is TypeKind.DYN:
			deref_layout, deref_meta = ecx.layout_of(concrete), None
		else:
			deref_layout = None
	elif meta is not None and meta.is_ptr:
		raise InvalidValue("encountered a pointer, but expected a slice length", path)
	if not is_ref:
		return

	if target.is_null:
		raise InvalidValue("encountered a null reference", path)
	size, align = ecx.size_and_align_of(ecx.layout_of(pointee_ty), meta)
	if not target.has_provenance:
		if size == 0 and target.offset % align == 0:
			return
		raise InvalidValue(f"encountered a dangling reference ({target} has no provenance)", path)
	if ecx.memory.is_dead(target.alloc_id):
		raise InvalidValue("encountered a dangling reference (use-after-free)", path)
	if ecx.memory.kind_of(target.alloc_id) is MemoryKind.FN:
		raise InvalidValue("encountered a reference to a function", path)
	alloc = ecx.memory.get(target.alloc_id)
	if ecx.config.check_alignment and (target.offset % align != 0 or alloc.align < align):
		raise InvalidValue(f"encountered an unaligned reference (required {align} byte alignment)", path)
	if target.offset + size > alloc.size:
		raise InvalidValue("encountered a dangling reference (going beyond the bounds of its allocation)", path)
	if deref_layout is None or (size == 0 and not deref_layout.unsized):
		return
	tracking.track(MemPlace(target, align, deref_meta), deref_layout, f"{path}.<deref>")


__all__ = ["RefTracking", "validate_operand"]
