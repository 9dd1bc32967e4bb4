"""Rank-1 constraint system for the permission threshold relation.

Signals are laid out the way circom lays them out: the constant ``one`` first,
then the public interface in declared order, then private inputs, then
internal signals. Every gate is ``<a,w> * <b,w> = <c,w>`` over the scalar
field of the pairing curve.

Besides gates the system declares witness *hints*: "signal t is bit k of the
linear combination s". They are not constraints, they only tell the witness
generator how to fill internal signals, which keeps witness generation free
of circuit-specific code.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from zkdap.core.config import settings
from zkdap.core.errors import MalformedCircuitError
from zkdap.crypto.backend import get_backend
from zkdap.crypto.field import next_power_of_two

logger = logging.getLogger(__name__)

# (signal index, coefficient) pairs sorted by index
LinearCombination = Tuple[Tuple[int, int], ...]

THRESHOLD_CIRCUIT = "data_access"
PUBLIC_LAYOUT = ("requiredPermission", "resourceId", "accessGranted")


class Visibility(str, Enum):
    """Role of a signal in the circuit interface."""

    ONE = "one"
    PUBLIC = "public"
    OUTPUT = "output"
    PRIVATE = "private"
    INTERNAL = "internal"


@dataclass(frozen=True)
class Signal:
    index: int
    name: str
    visibility: Visibility


@dataclass(frozen=True)
class Constraint:
    """One gate: <a,w> * <b,w> = <c,w>."""

    a: LinearCombination
    b: LinearCombination
    c: LinearCombination
    label: str = ""


@dataclass(frozen=True)
class BitHint:
    """Witness hint: signal ``target`` is bit ``bit`` of the value of ``source``."""

    target: int
    source: LinearCombination
    bit: int


def lc(terms: Mapping[int, int], modulus: int) -> LinearCombination:
    """Canonical sparse linear combination from an index -> coefficient map."""
    out = []
    for index in sorted(terms):
        coeff = terms[index] % modulus
        if coeff:
            out.append((index, coeff))
    return tuple(out)


def evaluate_lc(combination: LinearCombination, assignment: Sequence[int], modulus: int) -> int:
    return sum(coeff * assignment[index] for index, coeff in combination) % modulus


class ConstraintSystem:
    """Immutable R1CS with signal declarations and witness hints."""

    def __init__(self,
                 name: str,
                 field_modulus: int,
                 bit_width: int,
                 signals: Iterable[Signal],
                 constraints: Iterable[Constraint],
                 hints: Iterable[BitHint] = (),
                 ranges: Optional[Mapping[str, int]] = None):
        self.name = name
        self.field_modulus = field_modulus
        self.bit_width = bit_width
        self.signals: Tuple[Signal, ...] = tuple(signals)
        self.constraints: Tuple[Constraint, ...] = tuple(constraints)
        self.hints: Tuple[BitHint, ...] = tuple(hints)
        self.ranges: Dict[str, int] = dict(ranges or {})
        self._validate()
        self._by_name = {s.name: s for s in self.signals}
        self.digest = hashlib.sha256(
            json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode()
        ).hexdigest()

    def __repr__(self) -> str:
        return (f"ConstraintSystem(name={self.name!r}, bit_width={self.bit_width}, "
                f"signals={self.n_signals}, constraints={self.n_constraints})")

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, ConstraintSystem) and other.digest == self.digest

    def __hash__(self) -> int:
        return hash(self.digest)

    # ------------------------------------------------------------ interface

    @property
    def n_signals(self) -> int:
        return len(self.signals)

    @property
    def n_constraints(self) -> int:
        return len(self.constraints)

    @property
    def public_signals(self) -> Tuple[Signal, ...]:
        return tuple(s for s in self.signals if s.visibility in (Visibility.PUBLIC, Visibility.OUTPUT))

    @property
    def public_names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.public_signals)

    @property
    def n_public(self) -> int:
        """Number of public signals, not counting ``one``."""
        return len(self.public_signals)

    @property
    def input_names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.signals if s.visibility == Visibility.PUBLIC)

    @property
    def private_names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.signals if s.visibility == Visibility.PRIVATE)

    @property
    def domain_size(self) -> int:
        """Evaluation domain: smallest power of two holding every gate."""
        return next_power_of_two(self.n_constraints)

    @property
    def domain_power(self) -> int:
        return self.domain_size.bit_length() - 1

    def signal(self, name: str) -> Signal:
        try:
            return self._by_name[name]
        except KeyError:
            raise MalformedCircuitError(f"Circuit {self.name} has no signal {name!r}")

    def check_public_signals(self, values: Sequence[Any], names: Optional[Sequence[str]] = None) -> None:
        """Check a consumed public-signal vector against the declared interface.

        Raises:
            MalformedCircuitError: On a count or order mismatch
        """
        if len(values) != self.n_public:
            raise MalformedCircuitError(
                f"Expected {self.n_public} public signals {list(self.public_names)}, got {len(values)}"
            )
        if names is not None and tuple(names) != self.public_names:
            raise MalformedCircuitError(
                f"Public signals must be ordered {list(self.public_names)}, got {list(names)}"
            )

    def first_unsatisfied(self, assignment: Sequence[int]) -> Optional[Constraint]:
        """First gate the assignment violates, or None."""
        if len(assignment) != self.n_signals:
            raise MalformedCircuitError(
                f"Assignment has {len(assignment)} values, circuit has {self.n_signals} signals"
            )
        p = self.field_modulus
        for constraint in self.constraints:
            a = evaluate_lc(constraint.a, assignment, p)
            b = evaluate_lc(constraint.b, assignment, p)
            if a * b % p != evaluate_lc(constraint.c, assignment, p):
                return constraint
        return None

    def is_satisfied(self, assignment: Sequence[int]) -> bool:
        return self.first_unsatisfied(assignment) is None

    # -------------------------------------------------------- serialization

    def to_dict(self) -> Dict[str, Any]:
        """Serialized gate list and signal declarations."""
        def enc(combination):
            return [[index, str(coeff)] for index, coeff in combination]

        return {
            "name": self.name,
            "fieldModulus": str(self.field_modulus),
            "bitWidth": self.bit_width,
            "signals": [
                {"index": s.index, "name": s.name, "visibility": s.visibility.value}
                for s in self.signals
            ],
            "constraints": [
                {"a": enc(c.a), "b": enc(c.b), "c": enc(c.c), "label": c.label}
                for c in self.constraints
            ],
            "hints": [
                {"target": h.target, "source": enc(h.source), "bit": h.bit}
                for h in self.hints
            ],
            "ranges": dict(self.ranges),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConstraintSystem":
        """Load a constraint system artifact.

        Raises:
            MalformedCircuitError: If the artifact is inconsistent
        """
        try:
            p = int(data["fieldModulus"])

            def dec(combination):
                return lc({int(i): int(c) for i, c in combination}, p)

            return cls(
                name=data["name"],
                field_modulus=p,
                bit_width=int(data["bitWidth"]),
                signals=[
                    Signal(int(s["index"]), s["name"], Visibility(s["visibility"]))
                    for s in data["signals"]
                ],
                constraints=[
                    Constraint(dec(c["a"]), dec(c["b"]), dec(c["c"]), c.get("label", ""))
                    for c in data["constraints"]
                ],
                hints=[
                    BitHint(int(h["target"]), dec(h["source"]), int(h["bit"]))
                    for h in data.get("hints", [])
                ],
                ranges={k: int(v) for k, v in data.get("ranges", {}).items()},
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedCircuitError(f"Invalid constraint system artifact: {e}") from e

    # ----------------------------------------------------------- validation

    def _validate(self) -> None:
        n = len(self.signals)
        if n == 0 or self.signals[0].visibility != Visibility.ONE:
            raise MalformedCircuitError("Signal 0 must be the constant 'one'")
        if [s.index for s in self.signals] != list(range(n)):
            raise MalformedCircuitError("Signal indices must be contiguous and ordered")
        if len({s.name for s in self.signals}) != n:
            raise MalformedCircuitError("Signal names must be unique")

        # public interface directly follows 'one', as in circom's wire order
        order = [s.visibility for s in self.signals[1:]]
        n_public = sum(1 for v in order if v in (Visibility.PUBLIC, Visibility.OUTPUT))
        if any(v not in (Visibility.PUBLIC, Visibility.OUTPUT) for v in order[:n_public]):
            raise MalformedCircuitError("Public signals must directly follow 'one'")
        if any(v == Visibility.ONE for v in order):
            raise MalformedCircuitError("Only signal 0 may be 'one'")

        def check(combination: LinearCombination, where: str) -> None:
            for index, coeff in combination:
                if not 0 <= index < n:
                    raise MalformedCircuitError(f"{where} refers to unknown signal {index}")
                if not 0 < coeff < self.field_modulus:
                    raise MalformedCircuitError(f"{where} has a non-canonical coefficient")

        for i, constraint in enumerate(self.constraints):
            for part in (constraint.a, constraint.b, constraint.c):
                check(part, f"constraint {i} ({constraint.label})")
        for hint in self.hints:
            check(hint.source, f"hint for signal {hint.target}")
            if not 0 <= hint.target < n or self.signals[hint.target].visibility not in (
                    Visibility.INTERNAL, Visibility.OUTPUT):
                raise MalformedCircuitError(f"Hint target {hint.target} is not an internal or output signal")
        names = {s.name for s in self.signals}
        for name, width in self.ranges.items():
            if name not in names:
                raise MalformedCircuitError(f"Range declared for unknown signal {name!r}")
            if width < 1 or (1 << width) >= self.field_modulus:
                raise MalformedCircuitError(f"Range width {width} for {name!r} does not fit the field")


class _CircuitBuilder:
    """Accumulates signals, gates and hints for a fixed circuit."""

    def __init__(self, field_modulus: int):
        self.p = field_modulus
        self.signals: List[Signal] = []
        self.constraints: List[Constraint] = []
        self.hints: List[BitHint] = []

    def signal(self, name: str, visibility: Visibility) -> int:
        index = len(self.signals)
        self.signals.append(Signal(index, name, visibility))
        return index

    def enforce(self, a: Mapping[int, int], b: Mapping[int, int], c: Mapping[int, int], label: str) -> None:
        self.constraints.append(Constraint(lc(a, self.p), lc(b, self.p), lc(c, self.p), label))

    def decompose(self, source: Mapping[int, int], width: int, prefix: str,
                  top: Optional[int] = None) -> List[int]:
        """Prove ``source`` fits in ``width`` bits (``width + 1`` when ``top`` is given).

        When ``top`` is given, that existing signal becomes the most significant bit.
        """
        bits = [self.signal(f"{prefix}Bits[{k}]", Visibility.INTERNAL) for k in range(width)]
        if top is not None:
            bits.append(top)
        source_lc = lc(source, self.p)
        for k, bit in enumerate(bits):
            self.hints.append(BitHint(bit, source_lc, k))
            # bit * (bit - 1) = 0
            self.enforce({bit: 1}, {bit: 1, 0: -1}, {}, f"{prefix}.bit[{k}]")
        self.enforce({bit: 1 << k for k, bit in enumerate(bits)}, {0: 1}, dict(source), f"{prefix}.sum")
        return bits


def threshold_circuit(bit_width: Optional[int] = None, curve: Optional[str] = None) -> ConstraintSystem:
    """The ``userPermission >= requiredPermission`` circuit.

    Both compared values are decomposed into ``bit_width`` bits, and
    ``userPermission - requiredPermission + 2^W`` into ``W + 1`` bits whose top
    bit is ``accessGranted``; it is 1 exactly when the difference is
    non-negative, so equality grants. Each public signal (and ``one``) gets a
    ``w * 0 = 0`` binding gate so its verification-key term is independent
    and non-zero even when, like ``resourceId``, nothing else constrains it.
    """
    width = bit_width if bit_width is not None else settings.bit_width
    p = get_backend(curve or settings.curve).curve_order
    if width < 1 or (1 << (width + 1)) >= p:
        raise MalformedCircuitError(f"Bit width {width} does not fit the scalar field")

    builder = _CircuitBuilder(p)
    one = builder.signal("one", Visibility.ONE)
    required = builder.signal("requiredPermission", Visibility.PUBLIC)
    builder.signal("resourceId", Visibility.PUBLIC)
    granted = builder.signal("accessGranted", Visibility.OUTPUT)
    user = builder.signal("userPermission", Visibility.PRIVATE)

    builder.decompose({user: 1}, width, "userPermission")
    builder.decompose({required: 1}, width, "requiredPermission")
    builder.decompose({user: 1, required: -1, one: 1 << width}, width, "diff", top=granted)

    for signal in builder.signals[:granted + 1]:
        builder.enforce({signal.index: 1}, {}, {}, f"bind.{signal.name}")

    circuit = ConstraintSystem(
        name=THRESHOLD_CIRCUIT,
        field_modulus=p,
        bit_width=width,
        signals=builder.signals,
        constraints=builder.constraints,
        hints=builder.hints,
        ranges={"userPermission": width, "requiredPermission": width},
    )
    logger.debug(f"Built {circuit!r}")
    return circuit


__all__ = [
    "ConstraintSystem", "Constraint", "Signal", "BitHint", "Visibility",
    "LinearCombination", "lc", "evaluate_lc", "threshold_circuit",
    "THRESHOLD_CIRCUIT", "PUBLIC_LAYOUT",
]
