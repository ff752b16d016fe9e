# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Interning: promote the memory of an evaluated constant or static into
permanent GLOBAL storage.

Two passes, both iterative:

  1. a type-directed walk over the value (a ValueVisitor), following
     references, decides which allocations stay mutable and rejects `&mut`
     and references to interior-mutable data where the kind of item
     forbids them;
  2. a walk over the relocation graph (worklist + visited set) collects
     every reachable allocation, so pointers hidden in integers or raw
     pointers are covered as well. Dangling pointers and heap memory
     cannot be interned; allocations are promoted only once the whole
     graph has been accepted.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

from mirvm.core.layout import Abi, Layout
from mirvm.core.types_core import TypeId, TypeKind, TypeTable
from .errors import FaultKind, InternError
from .memory import MemoryKind
from .place import MemPlace
from .pointer import AllocId, Pointer
from .primval import PrimVal
from .value import ByVal, ByValPair
from .visitor import ValueVisitor

if TYPE_CHECKING:
	from .eval_context import InterpCx


logger = logging.getLogger(__name__)


class InternKind(Enum):
	CONSTANT = auto()
	PROMOTED = auto()
	STATIC = auto()
	STATIC_MUT = auto()


def contains_interior_mut(types: TypeTable, ty: TypeId, seen: Optional[Set[TypeId]] = None) -> bool:
	"""True if a value of `ty` holds interior-mutable storage inline (not behind a pointer)."""
	seen = set() if seen is None else seen
	if ty in seen:
		return False
	seen.add(ty)
	td = types.get(ty)
	if td.interior_mut:
		return True
	if td.kind in (TypeKind.STRUCT, TypeKind.TUPLE, TypeKind.ARRAY, TypeKind.SLICE):
		return any(contains_interior_mut(types, t, seen) for t in td.param_types)
	if td.kind is TypeKind.ENUM:
		return any(contains_interior_mut(types, t, seen) for v in td.variants for t in v.field_types)
	# dyn Trait could hide anything
	return td.kind is TypeKind.DYN


def _contains_refs(types: TypeTable, ty: TypeId, seen: Optional[Set[TypeId]] = None) -> bool:
	seen = set() if seen is None else seen
	if ty in seen:
		return False
	seen.add(ty)
	td = types.get(ty)
	if td.kind is TypeKind.REF:
		return True
	if td.kind in (TypeKind.STRUCT, TypeKind.TUPLE, TypeKind.ARRAY, TypeKind.SLICE):
		return any(_contains_refs(types, t, seen) for t in td.param_types)
	if td.kind is TypeKind.ENUM:
		return any(_contains_refs(types, t, seen) for v in td.variants for t in v.field_types)
	return False


class _InternVisitor(ValueVisitor):
	"""Type-directed walk deciding the mutability of each reachable allocation."""

	def __init__(self, ecx: "InterpCx", kind: InternKind) -> None:
		super().__init__(ecx)
		self.kind = kind
		self.mutable: Dict[AllocId, bool] = {}
		self.todo: List[Tuple[Pointer, Layout, Optional[PrimVal]]] = []
		self.seen: Set[Tuple[Pointer, TypeId]] = set()

	def run(self, mplace: MemPlace, layout: Layout) -> Dict[AllocId, bool]:
		self.seen.add((mplace.ptr, layout.ty))
		self.visit_value(mplace, layout, "")
		while self.todo:
			ptr, pointee_layout, meta = self.todo.pop()
			self.visit_value(MemPlace(ptr, pointee_layout.align, meta), pointee_layout, "")
		return self.mutable

	def visit_value(self, mp: MemPlace, layout: Layout, path: str) -> None:
		types = self.ecx.types
		if layout.abi is Abi.UNINHABITED or not _contains_refs(types, layout.ty):
			return
		if types.kind(layout.ty) is TypeKind.REF:
			self.visit_ref(mp, layout)
		else:
			self.walk_value(mp, layout, path)

	def visit_ref(self, mp: MemPlace, layout: Layout) -> None:
		from .traits import vtable_owner

		ecx = self.ecx
		types = ecx.types
		value = ecx.read_value_at(mp.ptr, layout)
		if isinstance(value, ByValPair):
			data, meta = value.a, value.b
		else:
			assert isinstance(value, ByVal)
			data, meta = value.prim, None
		if data.is_undef or not data.is_ptr:
			return
		target = data.to_ptr()
		if not target.has_provenance:
			return
		if ecx.memory.is_dead(target.alloc_id):
			raise InternError(FaultKind.DANGLING_IN_CONST, f"constant refers to deallocated alloc{target.alloc_id}")
		if ecx.memory.kind_of(target.alloc_id) is MemoryKind.FN:
			return
		pointee_ty = types.pointee(layout.ty)
		if types.kind(pointee_ty) is TypeKind.DYN and meta is not None:
			pointee_ty, _ = vtable_owner(ecx, meta.to_ptr())
			meta = None
		is_mut = bool(types.get(layout.ty).mutable)
		interior = contains_interior_mut(types, pointee_ty)
		in_const = self.kind in (InternKind.CONSTANT, InternKind.PROMOTED)
		if is_mut and self.kind is not InternKind.STATIC_MUT:
			raise InternError(
				FaultKind.INTERIOR_MUT_IN_CONST,
				f"mutable reference {types.display(layout.ty)} in the final value of a {self.kind.name.lower()}",
			)
		if interior and in_const:
			raise InternError(
				FaultKind.INTERIOR_MUT_IN_CONST,
				f"constant refers to interior-mutable data through {types.display(layout.ty)}",
			)
		if is_mut or interior:
			self.mutable[target.alloc_id] = True
		else:
			self.mutable.setdefault(target.alloc_id, False)
		key = (target, pointee_ty)
		if key not in self.seen:
			self.seen.add(key)
			self.todo.append((target, ecx.layout_of(pointee_ty), meta))


def intern_const_alloc_recursive(ecx: "InterpCx", kind: InternKind, mplace: MemPlace, layout: Layout) -> None:
	"""Intern the allocation behind `mplace` and everything it points to."""
	mem = ecx.memory
	visitor = _InternVisitor(ecx, kind)
	mutable = visitor.run(mplace, layout)
	root = mplace.ptr.alloc_id
	if mplace.ptr.has_provenance:
		if kind is InternKind.STATIC_MUT:
			mutable[root] = True
		elif kind is InternKind.STATIC and contains_interior_mut(ecx.types, layout.ty):
			mutable[root] = True
		else:
			mutable.setdefault(root, False)

	todo = [root] if mplace.ptr.has_provenance else []
	visited: Set[AllocId] = set()
	# nothing is promoted until the whole graph has been checked
	pending: List[AllocId] = []
	while todo:
		alloc_id = todo.pop()
		if alloc_id in visited:
			continue
		visited.add(alloc_id)
		if mem.is_dead(alloc_id):
			raise InternError(FaultKind.DANGLING_IN_CONST, f"constant refers to deallocated alloc{alloc_id}")
		alloc_kind = mem.kind_of(alloc_id)
		if alloc_kind is MemoryKind.FN or alloc_kind is MemoryKind.VTABLE:
			continue
		if alloc_kind is MemoryKind.HEAP:
			raise InternError(FaultKind.HEAP_IN_CONST, f"constant refers to heap allocation alloc{alloc_id}")
		alloc = mem.get(alloc_id)
		if alloc_kind is MemoryKind.GLOBAL and alloc_id != root:
			# already permanent (literals, other statics)
			continue
		pending.append(alloc_id)
		todo.extend(alloc.relocations.values())
	for alloc_id in pending:
		mem.intern(alloc_id, mutable=mutable.get(alloc_id, False))
	logger.debug("interned %d allocations for %s %s", len(pending), kind.name.lower(), ecx.types.display(layout.ty))


__all__ = ["InternKind", "contains_interior_mut", "intern_const_alloc_recursive"]
