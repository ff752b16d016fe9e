# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""TargetSpec construction and data-layout parsing."""

import pytest

from mirvm.core.target import TargetError, TargetSpec


X86_64 = "e-m:e-p270:32:32-p271:32:32-p272:64:64-i64:64-i128:128-f80:128-n8:16:32:64-S128"


def test_default_target_is_64_bit_little_endian() -> None:
	t = TargetSpec()
	assert t.pointer_size == 8
	assert t.endian == "little"
	assert t.usize_max == (1 << 64) - 1
	assert t.isize_min == -(1 << 63)
	assert t.isize_max == (1 << 63) - 1


def test_for_word_bits_32() -> None:
	t = TargetSpec.for_word_bits(32)
	assert t.pointer_size == 4
	assert t.pointer_align == 4
	assert t.usize_max == 0xFFFF_FFFF


def test_datalayout_x86_64() -> None:
	t = TargetSpec.from_datalayout(X86_64)
	assert t.pointer_size == 8
	assert t.endian == "little"
	assert t.int_align(8) == 8
	assert t.int_align(16) == 16
	# widths the string does not mention keep natural alignment
	assert t.int_align(4) == 4
	assert t.native_int_widths == (8, 16, 32, 64)


def test_datalayout_32_bit_pointer() -> None:
	t = TargetSpec.from_datalayout("e-p:32:32-i64:64")
	assert t.pointer_size == 4
	assert t.pointer_align == 4
	assert t.int_align(8) == 8


def test_datalayout_defaults_to_big_endian() -> None:
	t = TargetSpec.from_datalayout("p:64:64")
	assert t.endian == "big"
	assert t.pointer_size == 8


def test_datalayout_non_byte_pointer_rejected() -> None:
	with pytest.raises(TargetError, match="whole number of bytes"):
		TargetSpec.from_datalayout("e-p:12:16")


def test_datalayout_malformed() -> None:
	with pytest.raises(TargetError, match="malformed data layout"):
		TargetSpec.from_datalayout("e--p:64")


def test_unsupported_pointer_size() -> None:
	with pytest.raises(TargetError, match="unsupported pointer size"):
		TargetSpec(pointer_size=3, pointer_align=1)
