# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Minimal type core shared by the MIR, the layout oracle and the interpreter.

TypeIds are opaque ints indexing into a TypeTable. Structural types
(integers, pointers, tuples, arrays, fn pointers, ...) are interned so two
requests for the same shape return the same TypeId; this is what lets the
interpreter compare signatures by TypeId equality. Nominal types (structs,
enums) get a fresh TypeId per declaration.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Dict, Hashable, List, Optional, Sequence, Tuple


TypeId = int  # opaque handle into the TypeTable


class TypeKind(Enum):
	"""Kinds of types understood by the layout oracle and the interpreter."""

	BOOL = auto()
	CHAR = auto()
	INT = auto()
	UINT = auto()
	FLOAT = auto()
	UNIT = auto()
	NEVER = auto()
	RAW_PTR = auto()
	REF = auto()
	FN_PTR = auto()
	FN_DEF = auto()
	TUPLE = auto()
	STRUCT = auto()
	ENUM = auto()
	ARRAY = auto()
	SLICE = auto()
	STR = auto()
	DYN = auto()


@dataclass(frozen=True)
class FnSig:
	"""Function signature: parameter TypeIds plus return TypeId."""

	params: Tuple[TypeId, ...]
	ret: TypeId


@dataclass(frozen=True)
class VariantDef:
	"""One enum variant: its name, discriminant value and positional field types."""

	name: str
	discr: int
	field_types: Tuple[TypeId, ...] = ()


@dataclass(frozen=True)
class TypeDef:
	"""Definition of a type stored in the TypeTable."""

	kind: TypeKind
	name: str
	param_types: Tuple[TypeId, ...] = ()
	# INT/UINT/FLOAT width in bytes; None for pointer-sized integers.
	size: Optional[int] = None
	mutable: bool | None = None  # only meaningful for REF / RAW_PTR
	length: Optional[int] = None  # ARRAY element count
	field_names: Tuple[str, ...] = ()  # STRUCT
	variants: Tuple[VariantDef, ...] = ()  # ENUM
	sig: Optional[FnSig] = None  # FN_PTR / FN_DEF
	fn_name: Optional[str] = None  # FN_DEF
	trait: Optional[str] = None  # DYN
	interior_mut: bool = False  # STRUCT wrapping interior-mutable storage
	drop_fn: Optional[str] = None  # STRUCT/ENUM with a user drop function


class TypeTable:
	"""
	Type table that owns TypeIds.

	Enough to describe every type the interpreter must lay out: scalars,
	pointers (thin and fat), fn pointers and fn items, tuples, structs,
	enums, arrays, slices, `str` and trait objects.
	"""

	def __init__(self) -> None:
		self._defs: Dict[TypeId, TypeDef] = {}
		self._next_id: TypeId = 1  # reserve 0 for "invalid"
		self._interned: Dict[Hashable, TypeId] = {}

	# Scalars

	def ensure_bool(self) -> TypeId:
		return self._intern(("bool",), TypeDef(TypeKind.BOOL, "bool"))

	def ensure_char(self) -> TypeId:
		return self._intern(("char",), TypeDef(TypeKind.CHAR, "char"))

	def ensure_unit(self) -> TypeId:
		return self._intern(("unit",), TypeDef(TypeKind.UNIT, "()"))

	def ensure_never(self) -> TypeId:
		return self._intern(("never",), TypeDef(TypeKind.NEVER, "!"))

	def ensure_str(self) -> TypeId:
		return self._intern(("str",), TypeDef(TypeKind.STR, "str"))

	def ensure_int(self, bits: int) -> TypeId:
		"""Return the signed integer type `i<bits>`."""
		self._check_int_bits(bits)
		return self._intern(("int", bits), TypeDef(TypeKind.INT, f"i{bits}", size=bits // 8))

	def ensure_uint(self, bits: int) -> TypeId:
		"""Return the unsigned integer type `u<bits>`."""
		self._check_int_bits(bits)
		return self._intern(("uint", bits), TypeDef(TypeKind.UINT, f"u{bits}", size=bits // 8))

	def ensure_usize(self) -> TypeId:
		"""Pointer-sized unsigned integer; its width comes from the target."""
		return self._intern(("uint", None), TypeDef(TypeKind.UINT, "usize"))

	def ensure_isize(self) -> TypeId:
		return self._intern(("int", None), TypeDef(TypeKind.INT, "isize"))

	def ensure_float(self, bits: int) -> TypeId:
		if bits not in (32, 64):
			raise ValueError(f"unsupported float width {bits}")
		return self._intern(("float", bits), TypeDef(TypeKind.FLOAT, f"f{bits}", size=bits // 8))

	# Pointers and functions

	def new_raw_ptr(self, inner: TypeId, is_mut: bool) -> TypeId:
		name = f"*{'mut' if is_mut else 'const'} {self.display(inner)}"
		return self._intern(("raw", inner, is_mut), TypeDef(TypeKind.RAW_PTR, name, (inner,), mutable=is_mut))

	def new_ref(self, inner: TypeId, is_mut: bool) -> TypeId:
		"""Register a reference type to `inner` (shared vs mutable encoded in `mutable`)."""
		name = f"&{'mut ' if is_mut else ''}{self.display(inner)}"
		return self._intern(("ref", inner, is_mut), TypeDef(TypeKind.REF, name, (inner,), mutable=is_mut))

	def new_fn_ptr(self, params: Sequence[TypeId], ret: TypeId) -> TypeId:
		sig = FnSig(tuple(params), ret)
		name = f"fn({', '.join(self.display(p) for p in params)}) -> {self.display(ret)}"
		return self._intern(("fnptr", sig), TypeDef(TypeKind.FN_PTR, name, sig=sig))

	def new_fn_def(
		self,
		fn_name: str,
		params: Sequence[TypeId],
		ret: TypeId,
		generics: Sequence[TypeId] = (),
	) -> TypeId:
		"""
		Zero-sized type naming one function item (`fn_name`).

		`generics` are the type arguments of the item; intrinsics such as
		`size_of::<T>` read them from here (stored in `param_types`).
		"""
		sig = FnSig(tuple(params), ret)
		name = f"fn {fn_name}"
		if generics:
			name += f"::<{', '.join(self.display(g) for g in generics)}>"
		return self._intern(
			("fndef", fn_name, sig, tuple(generics)),
			TypeDef(TypeKind.FN_DEF, name, tuple(generics), sig=sig, fn_name=fn_name),
		)

	# Aggregates

	def new_tuple(self, elems: Sequence[TypeId]) -> TypeId:
		if not elems:
			return self.ensure_unit()
		name = f"({', '.join(self.display(e) for e in elems)}{',' if len(elems) == 1 else ''})"
		return self._intern(("tuple", tuple(elems)), TypeDef(TypeKind.TUPLE, name, tuple(elems)))

	def new_array(self, elem: TypeId, length: int) -> TypeId:
		if length < 0:
			raise ValueError("array length must be non-negative")
		name = f"[{self.display(elem)}; {length}]"
		return self._intern(("array", elem, length), TypeDef(TypeKind.ARRAY, name, (elem,), length=length))

	def new_slice(self, elem: TypeId) -> TypeId:
		return self._intern(("slice", elem), TypeDef(TypeKind.SLICE, f"[{self.display(elem)}]", (elem,)))

	def new_dyn(self, trait: str) -> TypeId:
		return self._intern(("dyn", trait), TypeDef(TypeKind.DYN, f"dyn {trait}", trait=trait))

	def declare_struct(self, name: str, *, interior_mut: bool = False, drop_fn: str | None = None) -> TypeId:
		"""
		Reserve a nominal struct TypeId before its fields are known.

		Self-referential types (`struct Node { next: *const Node }`) need the
		TypeId to exist before the field list is built; `define_struct` fills
		it in afterwards.
		"""
		return self._add(TypeDef(TypeKind.STRUCT, name, interior_mut=interior_mut, drop_fn=drop_fn))

	def define_struct(self, ty: TypeId, fields: Sequence[Tuple[str, TypeId]]) -> TypeId:
		td = self.get(ty)
		if td.kind is not TypeKind.STRUCT:
			raise ValueError(f"{td.name} is not a struct")
		self._defs[ty] = replace(
			td,
			param_types=tuple(t for _, t in fields),
			field_names=tuple(n for n, _ in fields),
		)
		return ty

	def new_struct(
		self,
		name: str,
		fields: Sequence[Tuple[str, TypeId]],
		*,
		interior_mut: bool = False,
		drop_fn: str | None = None,
	) -> TypeId:
		ty = self.declare_struct(name, interior_mut=interior_mut, drop_fn=drop_fn)
		return self.define_struct(ty, fields)

	def new_enum(
		self,
		name: str,
		variants: Sequence[Tuple[str, int, Sequence[TypeId]]],
		*,
		drop_fn: str | None = None,
	) -> TypeId:
		"""Register an enum; each variant is `(name, discriminant, field_types)`."""
		vdefs = tuple(VariantDef(vname, discr, tuple(fields)) for vname, discr, fields in variants)
		seen: set[int] = set()
		for v in vdefs:
			if v.discr in seen:
				raise ValueError(f"duplicate discriminant {v.discr} in enum {name}")
			seen.add(v.discr)
		return self._add(TypeDef(TypeKind.ENUM, name, variants=vdefs, drop_fn=drop_fn))

	# Queries

	def get(self, ty: TypeId) -> TypeDef:
		"""Fetch the TypeDef for a given TypeId."""
		return self._defs[ty]

	def kind(self, ty: TypeId) -> TypeKind:
		return self._defs[ty].kind

	def display(self, ty: TypeId) -> str:
		td = self._defs.get(ty)
		return td.name if td is not None else f"<type {ty}>"

	def pointee(self, ty: TypeId) -> TypeId:
		"""Pointee of a REF/RAW_PTR type."""
		td = self.get(ty)
		if td.kind not in (TypeKind.REF, TypeKind.RAW_PTR):
			raise ValueError(f"{td.name} is not a pointer type")
		return td.param_types[0]

	def is_pointer(self, ty: TypeId) -> bool:
		return self.get(ty).kind in (TypeKind.REF, TypeKind.RAW_PTR)

	def is_integral(self, ty: TypeId) -> bool:
		return self.get(ty).kind in (TypeKind.INT, TypeKind.UINT)

	def is_signed(self, ty: TypeId) -> bool:
		return self.get(ty).kind is TypeKind.INT

	def is_unsized(self, ty: TypeId) -> bool:
		"""True for `[T]`, `str`, `dyn Trait` and structs with such a tail field."""
		td = self.get(ty)
		if td.kind in (TypeKind.SLICE, TypeKind.STR, TypeKind.DYN):
			return True
		if td.kind is TypeKind.STRUCT and td.param_types:
			return self.is_unsized(td.param_types[-1])
		return False

	def unsized_tail(self, ty: TypeId) -> TypeId:
		"""Innermost unsized component (the type itself for slices/str/dyn)."""
		td = self.get(ty)
		while td.kind is TypeKind.STRUCT and td.param_types:
			ty = td.param_types[-1]
			td = self.get(ty)
		return ty

	def field_index(self, ty: TypeId, name: str) -> int:
		td = self.get(ty)
		try:
			return td.field_names.index(name)
		except ValueError:
			raise KeyError(f"{td.name} has no field {name!r}") from None

	def variant_index(self, ty: TypeId, name: str) -> int:
		td = self.get(ty)
		for idx, v in enumerate(td.variants):
			if v.name == name:
				return idx
		raise KeyError(f"{td.name} has no variant {name!r}")

	def field_types(self, ty: TypeId, variant: int | None = None) -> Tuple[TypeId, ...]:
		"""Positional field types of a tuple/struct, or of one enum variant."""
		td = self.get(ty)
		if td.kind is TypeKind.ENUM:
			if variant is None:
				raise ValueError(f"enum {td.name} needs a variant to list fields")
			return td.variants[variant].field_types
		if td.kind in (TypeKind.TUPLE, TypeKind.STRUCT):
			return td.param_types
		return ()

	# Internals

	@staticmethod
	def _check_int_bits(bits: int) -> None:
		if bits not in (8, 16, 32, 64):
			raise ValueError(f"unsupported integer width {bits}")

	def _intern(self, key: Hashable, td: TypeDef) -> TypeId:
		ty = self._interned.get(key)
		if ty is None:
			ty = self._add(td)
			self._interned[key] = ty
		return ty

	def _add(self, td: TypeDef) -> TypeId:
		ty_id = self._next_id
		self._next_id += 1
		self._defs[ty_id] = td
		return ty_id

	def __len__(self) -> int:
		return len(self._defs)

	def ids(self) -> List[TypeId]:
		return list(self._defs)


__all__ = ["TypeId", "TypeKind", "TypeDef", "TypeTable", "FnSig", "VariantDef"]
