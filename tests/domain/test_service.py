"""
Tests for domain services.

This module tests type compatibility checks and composition validation.
"""

from collections.abc import Mapping
from typing import Any, Optional, TypeVar

import pytest

from unitflow.application.adapter import FunctionUnit, PassthroughUnit
from unitflow.domain.error import TypeMismatch
from unitflow.domain.service import (
    is_compatible,
    is_mapping_type,
    type_name,
    validate_alternates,
    validate_branches,
    validate_chain,
)

T = TypeVar("T")


def int_to_str(x: int) -> str:
    return str(x)


def str_to_int(s: str) -> int:
    return len(s)


def float_to_float(x: float) -> float:
    return x * 2


class TestIsCompatible:
    """Test cases for is_compatible."""

    def test_any_matches_everything(self):
        """Test Any on either side matches."""
        assert is_compatible(Any, int)
        assert is_compatible(str, Any)

    def test_type_var_matches_everything(self):
        """Test type variables match."""
        assert is_compatible(T, int)
        assert is_compatible(int, T)

    def test_identical_types(self):
        """Test identical types are compatible."""
        assert is_compatible(int, int)
        assert is_compatible(list[int], list[int])

    def test_distinct_types(self):
        """Test distinct types are incompatible."""
        assert not is_compatible(str, int)
        assert not is_compatible(list[str], list[int])

    def test_subclass(self):
        """Test subclasses fit their base class."""
        assert is_compatible(bool, int)
        assert not is_compatible(int, bool)

    def test_int_fits_float(self):
        """Test int is accepted where float is expected."""
        assert is_compatible(int, float)
        assert not is_compatible(float, int)

    def test_unions(self):
        """Test union handling."""
        assert is_compatible(int, int | str)
        assert is_compatible(int | str, int | str | None)
        assert not is_compatible(int | str, int)
        assert is_compatible(int, Optional[int])

    def test_generic_origins(self):
        """Test generics are compared by origin and arguments."""
        assert is_compatible(dict[str, int], Mapping[str, int])
        assert is_compatible(dict[str, int], dict)
        assert is_compatible(list, list[int])
        assert not is_compatible(dict[str, int], list[int])


class TestIsMappingType:
    """Test cases for is_mapping_type."""

    def test_mappings(self):
        """Test mapping types are recognised."""
        assert is_mapping_type(dict)
        assert is_mapping_type(dict[str, Any])
        assert is_mapping_type(Mapping[str, int])
        assert is_mapping_type(Any)

    def test_non_mappings(self):
        """Test non-mapping types are rejected."""
        assert not is_mapping_type(int)
        assert not is_mapping_type(list[dict])
        assert not is_mapping_type(dict | int)


class TestTypeName:
    """Test cases for type_name."""

    def test_plain_type(self):
        """Test plain types use their class name."""
        assert type_name(int) == "int"

    def test_generic_type(self):
        """Test generic types drop the typing prefix."""
        assert type_name(Mapping[str, int]) == "collections.abc.Mapping[str, int]"
        assert type_name(Any) == "Any"


class TestValidateChain:
    """Test cases for validate_chain."""

    def test_valid_chain(self):
        """Test a well-typed chain validates."""
        assert validate_chain([FunctionUnit(int_to_str), FunctionUnit(str_to_int)])

    def test_too_short(self):
        """Test a chain needs two units."""
        with pytest.raises(ValueError):
            validate_chain([FunctionUnit(int_to_str)])

    def test_mismatch(self):
        """Test adjacent stages must agree."""
        with pytest.raises(TypeMismatch) as exc_info:
            validate_chain([FunctionUnit(int_to_str), FunctionUnit(float_to_float)])

        assert exc_info.value.unit == "float_to_float"
        assert "int_to_str" in exc_info.value.message

    def test_untyped_stages_pass(self):
        """Test undeclared types are accepted."""
        assert validate_chain([FunctionUnit(lambda x: x), FunctionUnit(int_to_str)])


class TestValidateBranches:
    """Test cases for validate_branches."""

    def test_valid_branches(self):
        """Test compatible branches validate."""
        assert validate_branches({"a": FunctionUnit(int_to_str), "b": PassthroughUnit(int)}, "fanout")

    def test_empty(self):
        """Test a fan-out needs at least one branch."""
        with pytest.raises(ValueError):
            validate_branches({}, "fanout")

    def test_bad_name(self):
        """Test branch names must be non-empty strings."""
        with pytest.raises(ValueError):
            validate_branches({"": PassthroughUnit()}, "fanout")

    def test_incompatible_inputs(self):
        """Test branches must accept the same input."""
        with pytest.raises(TypeMismatch):
            validate_branches({"a": FunctionUnit(int_to_str), "b": FunctionUnit(str_to_int)}, "fanout")


class TestValidateAlternates:
    """Test cases for validate_alternates."""

    def test_valid(self):
        """Test compatible alternates validate."""
        primary = FunctionUnit(int_to_str)
        assert validate_alternates(primary, [FunctionUnit(lambda x: "?", input_type=int, output_type=str)], "f")

    def test_no_alternates(self):
        """Test at least one alternate is needed."""
        with pytest.raises(ValueError):
            validate_alternates(FunctionUnit(int_to_str), [], "f")

    def test_output_mismatch(self):
        """Test alternates must produce the primary's output type."""
        with pytest.raises(TypeMismatch):
            validate_alternates(FunctionUnit(int_to_str), [FunctionUnit(lambda x: 0, input_type=int, output_type=int)], "f")
