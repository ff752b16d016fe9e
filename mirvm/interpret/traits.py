# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Trait-object vtables.

A vtable is a read-only VTABLE allocation of machine words:

    [0]      drop function pointer (0 when the type has no drop function)
    [1]      size of the concrete type
    [2]      alignment of the concrete type
    [3 + i]  function pointer of trait method i

One vtable is built per (concrete type, trait) and reused.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Tuple

from mirvm.core.types_core import TypeId
from .errors import FaultKind, bug, ub
from .memory import MemoryKind
from .pointer import Pointer

if TYPE_CHECKING:
	from .eval_context import InterpCx


logger = logging.getLogger(__name__)

VTABLE_HEADER_WORDS = 3  # drop, size, align


def get_vtable(ecx: "InterpCx", ty: TypeId, trait: str) -> Pointer:
	key = (ty, trait)
	cached = ecx.vtables.get(key)
	if cached is not None:
		return cached
	tdef = ecx.program.traits.get(trait)
	if tdef is None:
		bug(f"unknown trait {trait!r}")
	impl = ecx.program.impls.get((trait, ty))
	if impl is None:
		bug(f"{ecx.types.display(ty)} does not implement {trait}")
	if len(impl.methods) != len(tdef.methods):
		bug(f"impl of {trait} for {ecx.types.display(ty)} has {len(impl.methods)} methods, trait has {len(tdef.methods)}")
	layout = ecx.layout_of(ty)
	mem = ecx.memory
	ps = mem.pointer_size()
	ptr = mem.allocate((VTABLE_HEADER_WORDS + len(impl.methods)) * ps, ecx.target.pointer_align, MemoryKind.VTABLE)
	drop_fn = ecx.types.get(ty).drop_fn
	if drop_fn is not None:
		mem.write_ptr(ptr, mem.create_fn_alloc(drop_fn))
	else:
		mem.write_usize(ptr, 0)
	mem.write_usize(ptr.offset_by(ps), layout.size)
	mem.write_usize(ptr.offset_by(2 * ps), layout.align)
	for i, name in enumerate(impl.methods):
		mem.write_ptr(ptr.offset_by((VTABLE_HEADER_WORDS + i) * ps), mem.create_fn_alloc(name))
	mem.freeze(ptr.alloc_id)
	ecx.vtables[key] = ptr
	ecx.vtable_owners[ptr.alloc_id] = key
	logger.debug("vtable for %s as %s at %s", ecx.types.display(ty), trait, ptr)
	return ptr


def vtable_owner(ecx: "InterpCx", vtable: Pointer) -> Tuple[TypeId, str]:
	"""The (type, trait) a vtable pointer was built for; anything else faults."""
	owner = ecx.vtable_owners.get(vtable.alloc_id)
	if owner is None or vtable.offset != 0 or not ecx.memory.is_live(vtable.alloc_id):
		ub(FaultKind.INVALID_VALUE, f"{vtable} is not a vtable pointer")
	return owner


def read_drop_fn(ecx: "InterpCx", vtable: Pointer) -> Optional[str]:
	vtable_owner(ecx, vtable)
	slot = ecx.memory.read_ptr_sized(vtable)
	if not slot.is_ptr:
		return None
	assert slot.ptr is not None
	return ecx.memory.get_fn(slot.ptr)


def read_size_and_align(ecx: "InterpCx", vtable: Pointer) -> Tuple[int, int]:
	vtable_owner(ecx, vtable)
	ps = ecx.memory.pointer_size()
	return ecx.memory.read_usize(vtable.offset_by(ps)), ecx.memory.read_usize(vtable.offset_by(2 * ps))


def get_vtable_method(ecx: "InterpCx", vtable: Pointer, trait: str, index: int) -> str:
	"""Name of the function in slot `index` of a `trait` vtable."""
	_, owner_trait = vtable_owner(ecx, vtable)
	if owner_trait != trait:
		ub(FaultKind.SIGNATURE_MISMATCH, f"calling a {trait} method through a vtable for {owner_trait}")
	methods = ecx.program.traits[trait].methods
	if not 0 <= index < len(methods):
		bug(f"trait {trait} has no method #{index}")
	ps = ecx.memory.pointer_size()
	fn_ptr = ecx.memory.read_ptr(vtable.offset_by((VTABLE_HEADER_WORDS + index) * ps))
	return ecx.memory.get_fn(fn_ptr)


__all__ = [
	"VTABLE_HEADER_WORDS",
	"get_vtable",
	"vtable_owner",
	"read_drop_fn",
	"read_size_and_align",
	"get_vtable_method",
]
