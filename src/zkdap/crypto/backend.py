"""Pairing backend capability interface.

Provers, verifiers and the ceremony only ever talk to a ``PairingBackend``:
two curve groups with addition, scalar multiplication and a canonical text
encoding, plus a pairing-product check. Swapping the curve means registering
another backend, nothing in the gateway or proof logic changes.

The bundled backends wrap ``py_ecc``'s optimized BN254 (``bn128``, the curve
snarkjs and the EVM precompiles use) and BLS12-381 implementations.
"""

import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from types import ModuleType
from typing import Any, List, Sequence, Tuple

from py_ecc import optimized_bls12_381, optimized_bn128

from zkdap.core.errors import InvalidPointError
from zkdap.crypto.field import PrimeField

logger = logging.getLogger(__name__)

Point = Any  # backend-specific projective point


class CurveGroup(ABC):
    """A prime-order elliptic curve group used by a pairing."""

    name: str
    order: int
    generator: Point
    zero: Point
    coordinate_bytes: int

    @abstractmethod
    def add(self, a: Point, b: Point) -> Point: ...

    @abstractmethod
    def neg(self, a: Point) -> Point: ...

    @abstractmethod
    def mul(self, a: Point, scalar: int) -> Point: ...

    @abstractmethod
    def eq(self, a: Point, b: Point) -> bool: ...

    @abstractmethod
    def is_zero(self, a: Point) -> bool: ...

    @abstractmethod
    def encode(self, a: Point) -> List[Any]:
        """snarkjs-style affine encoding with decimal-string coordinates."""

    @abstractmethod
    def decode(self, data: Sequence[Any], check_subgroup: bool = True) -> Point:
        """Inverse of ``encode``; raises InvalidPointError on bad input."""

    @abstractmethod
    def to_ints(self, a: Point) -> List[int]:
        """Flat affine coordinates (all zeros for the identity)."""

    @abstractmethod
    def from_ints(self, values: Sequence[int], check_subgroup: bool = True) -> Point: ...

    def sub(self, a: Point, b: Point) -> Point:
        return self.add(a, self.neg(b))

    def msm(self, points: Sequence[Point], scalars: Sequence[int]) -> Point:
        """sum_i scalars[i] * points[i], skipping zero scalars."""
        acc = self.zero
        for point, scalar in zip(points, scalars):
            scalar %= self.order
            if scalar:
                acc = self.add(acc, self.mul(point, scalar))
        return acc


class PairingBackend(ABC):
    """Capabilities a Groth16 prover/verifier needs from a curve."""

    name: str
    curve_order: int
    field_modulus: int
    scalar_field: PrimeField
    g1: CurveGroup
    g2: CurveGroup

    @abstractmethod
    def pairing_product_is_one(self, pairs: Sequence[Tuple[Point, Point]]) -> bool:
        """True iff prod e(P_i, Q_i) == 1 for (G1, G2) pairs."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class _PyEccGroup(CurveGroup):
    """G1 or G2 of an optimized py_ecc curve module."""

    def __init__(self, name: str, module: ModuleType, twisted: bool, prime_order: bool = False):
        self.name = name
        self._m = module
        self._twisted = twisted
        # cofactor 1: every point on the curve is in the subgroup
        self._prime_order = prime_order
        self._b = module.b2 if twisted else module.b
        self.order = module.curve_order
        self.generator = module.G2 if twisted else module.G1
        self.zero = module.Z2 if twisted else module.Z1
        self.coordinate_bytes = (module.field_modulus.bit_length() + 7) // 8
        self._width = 2 if twisted else 1

    def add(self, a, b):
        return self._m.add(a, b)

    def neg(self, a):
        return self._m.neg(a)

    def mul(self, a, scalar):
        return self._m.multiply(a, scalar % self.order)

    def eq(self, a, b):
        if self.is_zero(a) or self.is_zero(b):
            return self.is_zero(a) and self.is_zero(b)
        return self._m.eq(a, b)

    def is_zero(self, a):
        return self._m.is_inf(a)

    def to_ints(self, a) -> List[int]:
        if self.is_zero(a):
            return [0] * (2 * self._width)
        x, y = self._m.normalize(a)
        if self._twisted:
            return [int(c) for c in x.coeffs] + [int(c) for c in y.coeffs]
        return [int(x.n), int(y.n)]

    def from_ints(self, values: Sequence[int], check_subgroup: bool = True):
        if len(values) != 2 * self._width:
            raise InvalidPointError(f"{self.name} point needs {2 * self._width} coordinates")
        p = self._m.field_modulus
        for v in values:
            if not isinstance(v, int) or isinstance(v, bool) or not 0 <= v < p:
                raise InvalidPointError(f"{self.name} coordinate out of range")
        if not any(values):
            return self.zero
        if self._twisted:
            fq2 = self._m.FQ2
            point = (fq2(list(values[0:2])), fq2(list(values[2:4])), fq2.one())
        else:
            fq = self._m.FQ
            point = (fq(values[0]), fq(values[1]), fq.one())
        if not self._m.is_on_curve(point, self._b):
            raise InvalidPointError(f"{self.name} point is not on the curve")
        if check_subgroup and not self._prime_order:
            if not self._m.is_inf(self._m.multiply(point, self.order)):
                raise InvalidPointError(f"{self.name} point is not in the prime-order subgroup")
        return point

    def encode(self, a) -> List[Any]:
        coords = [str(v) for v in self.to_ints(a)]
        if self._twisted:
            z = ["0", "0"] if self.is_zero(a) else ["1", "0"]
            if self.is_zero(a):
                coords[2] = "1"
            return [coords[0:2], coords[2:4], z]
        if self.is_zero(a):
            return ["0", "1", "0"]
        return [coords[0], coords[1], "1"]

    def decode(self, data: Sequence[Any], check_subgroup: bool = True):
        try:
            if self._twisted:
                rows = [[_parse_int(c) for c in row] for row in data]
                if len(rows) == 3:
                    if rows[2] == [0, 0]:
                        return self.zero
                    if rows[2] != [1, 0]:
                        raise InvalidPointError(f"{self.name} point is not affine")
                    rows = rows[:2]
                if len(rows) != 2 or any(len(r) != 2 for r in rows):
                    raise InvalidPointError(f"{self.name} point has the wrong shape")
                values = rows[0] + rows[1]
            else:
                values = [_parse_int(c) for c in data]
                if len(values) == 3:
                    if values[2] == 0:
                        return self.zero
                    if values[2] != 1:
                        raise InvalidPointError(f"{self.name} point is not affine")
                    values = values[:2]
        except TypeError as e:
            raise InvalidPointError(f"{self.name} point has the wrong shape: {e}") from e
        return self.from_ints(values, check_subgroup=check_subgroup)


def _parse_int(value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidPointError("boolean is not a coordinate")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    raise InvalidPointError(f"coordinate is not a decimal integer: {value!r}")


class PyEccBackend(PairingBackend):
    """Backend over one of py_ecc's optimized pairing-friendly curves."""

    def __init__(self, name: str, module: ModuleType, scalar_generator: int, g1_prime_order: bool = False):
        self.name = name
        self._m = module
        self.curve_order = module.curve_order
        self.field_modulus = module.field_modulus
        self.scalar_field = PrimeField(module.curve_order, scalar_generator)
        self.g1 = _PyEccGroup(f"{name}.G1", module, twisted=False, prime_order=g1_prime_order)
        self.g2 = _PyEccGroup(f"{name}.G2", module, twisted=True)

    def pairing_product_is_one(self, pairs: Sequence[Tuple[Point, Point]]) -> bool:
        acc = self._m.FQ12.one()
        for p1, q2 in pairs:
            if self.g1.is_zero(p1) or self.g2.is_zero(q2):
                continue
            acc = acc * self._m.pairing(q2, p1, final_exponentiate=False)
        return self._m.final_exponentiate(acc) == self._m.FQ12.one()


_BACKENDS = {
    "bn128": lambda: PyEccBackend("bn128", optimized_bn128, scalar_generator=5, g1_prime_order=True),
    "bls12_381": lambda: PyEccBackend("bls12_381", optimized_bls12_381, scalar_generator=7),
}


@lru_cache()
def get_backend(name: str = "bn128") -> PairingBackend:
    """Get the shared backend instance for a curve name.

    Raises:
        ValueError: If the curve is not supported
    """
    try:
        factory = _BACKENDS[name]
    except KeyError:
        raise ValueError(f"Unsupported curve: {name} (available: {', '.join(sorted(_BACKENDS))})")
    logger.debug(f"Loaded pairing backend {name}")
    return factory()


__all__ = ["CurveGroup", "PairingBackend", "PyEccBackend", "get_backend", "Point"]
