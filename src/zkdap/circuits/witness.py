"""Witness generation.

A witness is the full assignment of a constraint system for one input. It
contains the private permission level, so it lives only in the prover's memory:
its repr never shows values and nothing in this package writes it next to a
verification key.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Tuple

from zkdap.circuits.constraint_system import ConstraintSystem
from zkdap.core.errors import MalformedCircuitError, UnsatisfiableConstraintError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Witness:
    """Satisfying assignment for one concrete input."""

    circuit_digest: str
    public_names: Tuple[str, ...]
    values: Tuple[int, ...] = field(repr=False)

    def __repr__(self) -> str:
        return f"Witness(circuit={self.circuit_digest[:12]}, signals={len(self.values)})"

    @property
    def public_signals(self) -> Tuple[int, ...]:
        """Public interface values in declared order."""
        return self.values[1:1 + len(self.public_names)]

    def public_value(self, name: str) -> int:
        try:
            return self.public_signals[self.public_names.index(name)]
        except ValueError:
            raise MalformedCircuitError(f"{name!r} is not a public signal")

    @property
    def access_granted(self) -> int:
        return self.public_value("accessGranted")

    def to_list(self) -> List[str]:
        """Witness artifact: decimal-string field elements in signal order."""
        return [str(v) for v in self.values]


def _parse_value(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise UnsatisfiableConstraintError(f"{name} must be an integer, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        digits = text[1:] if text.startswith("-") else text
        if digits.isascii() and digits.isdigit():
            return int(text)
    raise UnsatisfiableConstraintError(f"{name} must be an integer, got {type(value).__name__}")


def generate(constraint_system: ConstraintSystem,
             private_input: Mapping[str, Any],
             public_input: Mapping[str, Any]) -> Witness:
    """Evaluate the constraint system on a concrete input.

    Args:
        constraint_system: Circuit to evaluate
        private_input: Values of the private inputs (``userPermission``)
        public_input: Values of the public inputs (``requiredPermission``, ``resourceId``)

    Returns:
        Witness: Full assignment, outputs included

    Raises:
        MalformedCircuitError: Unknown or missing input names
        UnsatisfiableConstraintError: Value outside its declared domain
    """
    cs = constraint_system
    p = cs.field_modulus

    for supplied, expected, kind in ((private_input, cs.private_names, "private"),
                                     (public_input, cs.input_names, "public")):
        unknown = set(supplied) - set(expected)
        missing = set(expected) - set(supplied)
        if unknown or missing:
            raise MalformedCircuitError(
                f"{kind} inputs must be exactly {list(expected)} "
                f"(unknown: {sorted(unknown)}, missing: {sorted(missing)})"
            )

    assignment: List[Optional[int]] = [None] * cs.n_signals
    assignment[0] = 1
    for name, raw in list(private_input.items()) + list(public_input.items()):
        value = _parse_value(name, raw)
        width = cs.ranges.get(name)
        if width is not None:
            if not 0 <= value < (1 << width):
                raise UnsatisfiableConstraintError(f"{name} does not fit in {width} bits")
        elif not 0 <= value < p:
            raise UnsatisfiableConstraintError(f"{name} is not a canonical field element")
        assignment[cs.signal(name).index] = value

    for hint in cs.hints:
        total = 0
        for index, coeff in hint.source:
            if assignment[index] is None:
                raise MalformedCircuitError(f"Hint for signal {hint.target} reads unassigned signal {index}")
            total += coeff * assignment[index]
        assignment[hint.target] = ((total % p) >> hint.bit) & 1

    unassigned = [s.name for s, v in zip(cs.signals, assignment) if v is None]
    if unassigned:
        raise MalformedCircuitError(f"No value or hint for signals {unassigned}")

    broken = cs.first_unsatisfied(assignment)
    if broken is not None:
        raise UnsatisfiableConstraintError(f"Input violates constraint {broken.label or '?'}")

    logger.debug(f"Generated witness for {cs.name} ({cs.n_signals} signals)")
    return Witness(circuit_digest=cs.digest, public_names=cs.public_names, values=tuple(assignment))


__all__ = ["Witness", "generate"]
