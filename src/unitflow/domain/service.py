import collections.abc
import types
from typing import Any, TypeVar, Union, get_args, get_origin

from unitflow.domain.error import TypeMismatch


def _is_union(tp: Any) -> bool:
    return isinstance(tp, types.UnionType) or get_origin(tp) is Union


def is_compatible(produced: Any, expected: Any) -> bool:
    """
    Checks whether a value of type ``produced`` may be fed where ``expected`` is declared.

    ``Any`` and type variables match everything. Unions are accepted when every
    produced member fits some expected member. Generic aliases are compared by
    origin (``dict`` fits ``Mapping``) and then argument by argument when both
    sides declare arguments. ``int`` is accepted where ``float`` is expected.

    :param produced: Type produced by the upstream unit
    :type produced: Any
    :param expected: Type declared by the downstream unit
    :type expected: Any
    :returns: True if the types line up
    :rtype: bool
    """
    if produced is Any or expected is Any:
        return True
    if isinstance(produced, TypeVar) or isinstance(expected, TypeVar):
        return True
    if produced == expected:
        return True
    if _is_union(produced):
        return all(is_compatible(member, expected) for member in get_args(produced))
    if _is_union(expected):
        return any(is_compatible(produced, member) for member in get_args(expected))
    if produced is int and expected is float:
        return True

    produced_origin = get_origin(produced) or produced
    expected_origin = get_origin(expected) or expected
    if not (isinstance(produced_origin, type) and isinstance(expected_origin, type)):
        return False
    if not issubclass(produced_origin, expected_origin):
        return False

    produced_args, expected_args = get_args(produced), get_args(expected)
    if not produced_args or not expected_args:
        return True
    if len(produced_args) != len(expected_args):
        # tuple[int, ...] against tuple[int, int] and the like
        return True
    return all(
        is_compatible(p, e) for p, e in zip(produced_args, expected_args) if p is not Ellipsis and e is not Ellipsis
    )


def is_mapping_type(tp: Any) -> bool:
    """Returns True if ``tp`` describes a mapping (or is undeclared)."""
    if tp is Any or isinstance(tp, TypeVar):
        return True
    if _is_union(tp):
        return all(is_mapping_type(member) for member in get_args(tp))
    origin = get_origin(tp) or tp
    return isinstance(origin, type) and issubclass(origin, collections.abc.Mapping)


def type_name(tp: Any) -> str:
    if isinstance(tp, type) and not get_args(tp):
        return tp.__name__
    return repr(tp).replace("typing.", "")


def validate_chain(units: list) -> bool:
    """
    Validates that each stage's output fits the next stage's input.

    :param units: The stages, in execution order
    :type units: list[WorkUnit]
    :returns: True if the chain is well formed
    :rtype: bool
    :raises ValueError: If fewer than two stages are given
    :raises TypeMismatch: If two adjacent stages disagree on types
    """
    if len(units) < 2:
        raise ValueError("A chain needs at least two units")
    for upstream, downstream in zip(units, units[1:]):
        if not is_compatible(upstream.invoke_output_type, downstream.input_type):
            raise TypeMismatch(
                downstream.name,
                f"expects {type_name(downstream.input_type)} but {upstream.name} "
                f"produces {type_name(upstream.invoke_output_type)}",
            )
    return True


def validate_branches(branches: dict, owner: str) -> bool:
    """
    Validates a fan-out's branch mapping.

    :param branches: Mapping of branch name to unit
    :type branches: dict[str, WorkUnit]
    :param owner: Name of the composite, used in error messages
    :type owner: str
    :returns: True if the mapping is valid
    :rtype: bool
    :raises ValueError: If the mapping is empty or a name is not a non-empty string
    :raises TypeMismatch: If two branches declare incompatible input types
    """
    if not branches:
        raise ValueError(f"{owner} needs at least one branch")
    for name in branches:
        if not name or not isinstance(name, str):
            raise ValueError(f"Invalid branch name in {owner}: {name!r}")
    first, *others = branches.values()
    for unit in others:
        if not (is_compatible(first.input_type, unit.input_type) or is_compatible(unit.input_type, first.input_type)):
            raise TypeMismatch(
                owner,
                f"branch {unit.name} expects {type_name(unit.input_type)} "
                f"but {first.name} expects {type_name(first.input_type)}",
            )
    return True


def validate_alternates(primary: Any, alternates: list, owner: str) -> bool:
    """
    Validates that every alternate can stand in for the primary unit.

    :raises ValueError: If no alternates are given
    :raises TypeMismatch: If an alternate's signature differs from the primary's
    """
    if not alternates:
        raise ValueError(f"{owner} needs at least one alternate")
    for alternate in alternates:
        if not is_compatible(primary.input_type, alternate.input_type):
            raise TypeMismatch(
                owner,
                f"alternate {alternate.name} expects {type_name(alternate.input_type)} "
                f"but {primary.name} expects {type_name(primary.input_type)}",
            )
        if not is_compatible(alternate.invoke_output_type, primary.invoke_output_type):
            raise TypeMismatch(
                owner,
                f"alternate {alternate.name} produces {type_name(alternate.invoke_output_type)} "
                f"but {primary.name} produces {type_name(primary.invoke_output_type)}",
            )
    return True
