# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Mid-level Intermediate Representation (MIR) consumed by the interpreter.

The MIR is produced elsewhere (a front end lowers its own HIR into these
dataclasses, or tests build it with `mirvm.mir.builder.MirBuilder`). There
are **no semantics** baked in here; it is a typed tree of places, operands,
rvalues, statements, terminators and blocks.

Conventions:
  - local 0 is the return place; locals 1..=arg_count are the arguments;
  - blocks are addressed by index, block 0 is the entry block;
  - every operand and place is typed through the function's `LocalDecl`s and
    explicit TypeIds on constants, fields, casts and aggregates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional, Tuple, Union

from mirvm.core.types_core import FnSig, TypeId, TypeTable


LocalId = int
BlockId = int

RETURN_PLACE: LocalId = 0


# Places

class ProjectionElem:
	"""Base class for place projections."""
	pass


@dataclass(frozen=True)
class Deref(ProjectionElem):
	"""`*place`: follow the pointer stored in the place."""


@dataclass(frozen=True)
class Field(ProjectionElem):
	"""`place.<index>` with the field's TypeId."""
	index: int
	ty: TypeId


@dataclass(frozen=True)
class Index(ProjectionElem):
	"""`place[local]` where `local` holds a usize index."""
	local: LocalId


@dataclass(frozen=True)
class ConstantIndex(ProjectionElem):
	"""
	`place[offset]` (or `place[len - offset]` when `from_end`).

	`min_length` is the length the producer proved; the interpreter still
	bounds-checks against the real length.
	"""
	offset: int
	min_length: int
	from_end: bool = False


@dataclass(frozen=True)
class Subslice(ProjectionElem):
	"""`place[start .. len - end]` on a slice, or `[start .. end]` on an array."""
	start: int
	end: int
	from_end: bool = True


@dataclass(frozen=True)
class Downcast(ProjectionElem):
	"""Select enum variant `variant` for the following Field projections."""
	variant: int


@dataclass(frozen=True)
class Place:
	"""A local plus a chain of projections."""
	local: LocalId
	projection: Tuple[ProjectionElem, ...] = ()

	def project(self, elem: ProjectionElem) -> "Place":
		return Place(self.local, self.projection + (elem,))

	def deref(self) -> "Place":
		return self.project(Deref())

	def field(self, index: int, ty: TypeId) -> "Place":
		return self.project(Field(index, ty))

	def index(self, local: LocalId) -> "Place":
		return self.project(Index(local))

	def downcast(self, variant: int) -> "Place":
		return self.project(Downcast(variant))

	def __str__(self) -> str:
		text = f"_{self.local}"
		for elem in self.projection:
			if isinstance(elem, Deref):
				text = f"(*{text})"
			elif isinstance(elem, Field):
				text = f"{text}.{elem.index}"
			elif isinstance(elem, Index):
				text = f"{text}[_{elem.local}]"
			elif isinstance(elem, ConstantIndex):
				text = f"{text}[{'-' if elem.from_end else ''}{elem.offset}]"
			elif isinstance(elem, Subslice):
				text = f"{text}[{elem.start}..{'-' if elem.from_end else ''}{elem.end}]"
			elif isinstance(elem, Downcast):
				text = f"({text} as variant#{elem.variant})"
		return text


# Operands

class Operand:
	"""Base class for MIR operands."""
	pass


@dataclass(frozen=True)
class Copy(Operand):
	place: Place


@dataclass(frozen=True)
class Move(Operand):
	"""Like Copy, but the source local is marked moved-out when unprojected."""
	place: Place


@dataclass(frozen=True)
class StaticRef:
	"""Constant payload naming a static item; the constant's type is `&T`."""
	name: str


@dataclass(frozen=True)
class FnRef:
	"""Constant payload naming a function; used with FN_PTR-typed constants."""
	name: str


@dataclass(frozen=True)
class Constant(Operand):
	"""
	Typed constant.

	`value` depends on the type:
	  - int for integers, char (code point) and raw pointers (address);
	  - bool / float for bool / floats (char may also be a 1-char str);
	  - bytes for `&str` / `&[u8]` literals;
	  - FnRef for fn pointers, StaticRef for references to statics;
	  - None for zero-sized types (unit, fn items).
	"""
	ty: TypeId
	value: object = None


@dataclass(frozen=True)
class Virtual:
	"""
	Callee of a dynamic method call: method `index` of `trait`.

	The first call argument must be a trait-object fat pointer; its vtable
	supplies the concrete function and the data pointer becomes `self`.
	"""
	trait: str
	index: int


Callee = Union[Operand, Virtual]


# Rvalues

class BinOp(Enum):
	ADD = auto()
	SUB = auto()
	MUL = auto()
	DIV = auto()
	REM = auto()
	BIT_XOR = auto()
	BIT_AND = auto()
	BIT_OR = auto()
	SHL = auto()
	SHR = auto()
	EQ = auto()
	LT = auto()
	LE = auto()
	NE = auto()
	GE = auto()
	GT = auto()
	OFFSET = auto()


class UnOp(Enum):
	NOT = auto()
	NEG = auto()


class NullOp(Enum):
	SIZE_OF = auto()
	ALIGN_OF = auto()


class CastKind(Enum):
	NUMERIC = auto()  # int/float/bool/char conversions
	PTR_TO_PTR = auto()  # thin->thin, fat->fat, fat->thin
	PTR_TO_ADDR = auto()
	ADDR_TO_PTR = auto()
	FN_PTR_TO_PTR = auto()
	REIFY_FN_POINTER = auto()  # fn item -> fn pointer
	UNSIZE = auto()  # &[T; N] -> &[T], &T -> &dyn Trait


class AggregateKind(Enum):
	ARRAY = auto()
	TUPLE = auto()
	ADT = auto()  # struct, or enum variant when `variant` is set


class Rvalue:
	"""Base class for MIR rvalues."""
	pass


@dataclass(frozen=True)
class Use(Rvalue):
	operand: Operand


@dataclass(frozen=True)
class Repeat(Rvalue):
	"""`[operand; count]`"""
	operand: Operand
	count: int


@dataclass(frozen=True)
class Ref(Rvalue):
	"""`&place` / `&mut place`"""
	place: Place
	mutable: bool = False


@dataclass(frozen=True)
class AddressOf(Rvalue):
	"""`&raw const place` / `&raw mut place`"""
	place: Place
	mutable: bool = False


@dataclass(frozen=True)
class Len(Rvalue):
	"""Length of an array or slice place."""
	place: Place


@dataclass(frozen=True)
class Cast(Rvalue):
	kind: CastKind
	operand: Operand
	ty: TypeId


@dataclass(frozen=True)
class BinaryOp(Rvalue):
	op: BinOp
	left: Operand
	right: Operand


@dataclass(frozen=True)
class CheckedBinaryOp(Rvalue):
	"""Produces `(result, overflowed)`; the destination is a `(T, bool)` tuple."""
	op: BinOp
	left: Operand
	right: Operand


@dataclass(frozen=True)
class UnaryOp(Rvalue):
	op: UnOp
	operand: Operand


@dataclass(frozen=True)
class Discriminant(Rvalue):
	place: Place


@dataclass(frozen=True)
class Aggregate(Rvalue):
	kind: AggregateKind
	ty: TypeId
	operands: Tuple[Operand, ...]
	variant: Optional[int] = None


@dataclass(frozen=True)
class NullaryOp(Rvalue):
	op: NullOp
	ty: TypeId


# Statements

class Statement:
	"""Base class for MIR statements."""
	pass


@dataclass(frozen=True)
class Assign(Statement):
	place: Place
	rvalue: Rvalue


@dataclass(frozen=True)
class SetDiscriminant(Statement):
	place: Place
	variant: int


@dataclass(frozen=True)
class StorageLive(Statement):
	local: LocalId


@dataclass(frozen=True)
class StorageDead(Statement):
	local: LocalId


@dataclass(frozen=True)
class Nop(Statement):
	pass


# Terminators

class Terminator:
	"""Base class for MIR terminators (end of a basic block)."""
	pass


@dataclass(frozen=True)
class Goto(Terminator):
	target: BlockId


@dataclass(frozen=True)
class SwitchInt(Terminator):
	"""Jump to `targets[i]` when `discr == values[i]`, else to `otherwise`."""
	discr: Operand
	values: Tuple[int, ...]
	targets: Tuple[BlockId, ...]
	otherwise: BlockId


@dataclass(frozen=True)
class Return(Terminator):
	pass


@dataclass(frozen=True)
class Unreachable(Terminator):
	pass


@dataclass(frozen=True)
class Abort(Terminator):
	pass


@dataclass(frozen=True)
class Drop(Terminator):
	"""Run the drop function of the value in `place` (if any), then jump."""
	place: Place
	target: BlockId


class AssertKind(Enum):
	OVERFLOW = auto()
	DIVISION_BY_ZERO = auto()
	REMAINDER_BY_ZERO = auto()
	BOUNDS_CHECK = auto()
	GENERIC = auto()


@dataclass(frozen=True)
class Assert(Terminator):
	"""Continue to `target` when `cond == expected`, else fault with `kind`."""
	cond: Operand
	expected: bool
	kind: AssertKind
	target: BlockId
	message: str = ""


@dataclass(frozen=True)
class Call(Terminator):
	"""
	Call `func(args...)`, store the result in `destination`, jump to `target`.

	`target` is None for calls to diverging functions.
	"""
	func: Callee
	args: Tuple[Operand, ...]
	destination: Optional[Place]
	target: Optional[BlockId]


# Containers

@dataclass(frozen=True)
class LocalDecl:
	ty: TypeId
	name: Optional[str] = None


@dataclass
class BasicBlock:
	"""Statements followed by a single terminator."""
	statements: List[Statement] = field(default_factory=list)
	terminator: Optional[Terminator] = None


@dataclass
class MirFunc:
	"""
	MIR function: signature, local declarations, and blocks.

	`locals[0]` is the return place and `locals[1:arg_count + 1]` are the
	arguments; `blocks[0]` is the entry block. `is_const` marks functions
	callable during const-eval.
	"""
	name: str
	sig: FnSig
	arg_count: int
	locals: List[LocalDecl] = field(default_factory=list)
	blocks: List[BasicBlock] = field(default_factory=list)
	is_const: bool = False


@dataclass(frozen=True)
class TraitDef:
	"""Trait with its method signatures; `self` is the first parameter of each."""
	name: str
	methods: Tuple[Tuple[str, FnSig], ...]


@dataclass(frozen=True)
class ImplDef:
	"""`impl trait for self_ty`: function names in the trait's method order."""
	trait: str
	self_ty: TypeId
	methods: Tuple[str, ...]


@dataclass(frozen=True)
class StaticDef:
	"""A static item: its type and the zero-argument function computing it."""
	name: str
	ty: TypeId
	init: str
	mutable: bool = False


@dataclass
class Program:
	"""Everything the interpreter may need to look up by name."""
	types: TypeTable = field(default_factory=TypeTable)
	functions: Dict[str, MirFunc] = field(default_factory=dict)
	traits: Dict[str, TraitDef] = field(default_factory=dict)
	impls: Dict[Tuple[str, TypeId], ImplDef] = field(default_factory=dict)
	statics: Dict[str, StaticDef] = field(default_factory=dict)

	def add_function(self, func: MirFunc) -> MirFunc:
		self.functions[func.name] = func
		return func

	def add_impl(self, impl: ImplDef) -> ImplDef:
		self.impls[(impl.trait, impl.self_ty)] = impl
		return impl

	def add_trait(self, trait: TraitDef) -> TraitDef:
		self.traits[trait.name] = trait
		return trait

	def add_static(self, static: StaticDef) -> StaticDef:
		self.statics[static.name] = static
		return static

	def fn_item(self, name: str, generics: Tuple[TypeId, ...] = ()) -> TypeId:
		"""Fn item type of the MIR function `name` (for Constant callees)."""
		sig = self.functions[name].sig
		return self.types.new_fn_def(name, sig.params, sig.ret, generics)


__all__ = [
	"LocalId",
	"BlockId",
	"RETURN_PLACE",
	"ProjectionElem",
	"Deref",
	"Field",
	"Index",
	"ConstantIndex",
	"Subslice",
	"Downcast",
	"Place",
	"Operand",
	"Copy",
	"Move",
	"Constant",
	"StaticRef",
	"FnRef",
	"Virtual",
	"Callee",
	"BinOp",
	"UnOp",
	"NullOp",
	"CastKind",
	"AggregateKind",
	"Rvalue",
	"Use",
	"Repeat",
	"Ref",
	"AddressOf",
	"Len",
	"Cast",
	"BinaryOp",
	"CheckedBinaryOp",
	"UnaryOp",
	"Discriminant",
	"Aggregate",
	"NullaryOp",
	"Statement",
	"Assign",
	"SetDiscriminant",
	"StorageLive",
	"StorageDead",
	"Nop",
	"Terminator",
	"Goto",
	"SwitchInt",
	"Return",
	"Unreachable",
	"Abort",
	"Drop",
	"AssertKind",
	"Assert",
	"Call",
	"LocalDecl",
	"BasicBlock",
	"MirFunc",
	"TraitDef",
	"ImplDef",
	"StaticDef",
	"Program",
]
