"""Prime-field arithmetic and radix-2 FFTs.

The scalar field of the pairing curve is used for every signal value. Gates
are interpolated over the multiplicative subgroup of 2^k-th roots of unity, so
the same Cooley-Tukey routine serves two purposes: moving between evaluation
and coefficient form of scalar polynomials, and building the Lagrange basis
"in the exponent" from powers of tau during setup. The latter only needs
group addition and scalar multiplication, which is why ``fft`` takes them as
callables.
"""

from typing import Callable, List, Sequence, TypeVar

T = TypeVar("T")


class PrimeField:
    """Arithmetic modulo a prime with a large power-of-two subgroup."""

    def __init__(self, modulus: int, generator: int):
        """
        Args:
            modulus: Field order (prime)
            generator: Generator of the multiplicative group
        """
        self.modulus = modulus
        self.generator = generator
        two_adicity = 0
        while (modulus - 1) % (1 << (two_adicity + 1)) == 0:
            two_adicity += 1
        self.two_adicity = two_adicity

    def __repr__(self) -> str:
        return f"PrimeField(modulus={self.modulus})"

    def inv(self, value: int) -> int:
        value %= self.modulus
        if value == 0:
            raise ZeroDivisionError("zero has no inverse")
        return pow(value, -1, self.modulus)

    def is_canonical(self, value: int) -> bool:
        """True if ``value`` is an int in [0, modulus)."""
        return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < self.modulus

    def root_of_unity(self, n: int) -> int:
        """Primitive n-th root of unity, n a power of two."""
        if n <= 0 or n & (n - 1):
            raise ValueError(f"domain size must be a power of two, got {n}")
        if n.bit_length() - 1 > self.two_adicity:
            raise ValueError(f"field has no root of unity of order {n}")
        omega = pow(self.generator, (self.modulus - 1) // n, self.modulus)
        if n > 1 and pow(omega, n // 2, self.modulus) == 1:
            raise ValueError(f"{self.generator} does not generate the multiplicative group")
        return omega

    def powers(self, base: int, count: int) -> List[int]:
        """[base^0, base^1, ..., base^(count-1)]"""
        out = []
        acc = 1
        for _ in range(count):
            out.append(acc)
            acc = acc * base % self.modulus
        return out

    # ---------------------------------------------------------------- FFTs

    def fft(self, values: Sequence[T], omega: int,
            add: Callable[[T, T], T],
            sub: Callable[[T, T], T],
            scale: Callable[[T, int], T]) -> List[T]:
        """out[i] = sum_k values[k] * omega^(i*k) over any module of the field."""
        n = len(values)
        if n == 1:
            return [values[0]]
        half = n // 2
        omega_sq = omega * omega % self.modulus
        even = self.fft(values[0::2], omega_sq, add, sub, scale)
        odd = self.fft(values[1::2], omega_sq, add, sub, scale)
        out: List[T] = [values[0]] * n
        w = 1
        for i in range(half):
            t = scale(odd[i], w)
            out[i] = add(even[i], t)
            out[i + half] = sub(even[i], t)
            w = w * omega % self.modulus
        return out

    def ifft(self, values: Sequence[T], omega: int,
             add: Callable[[T, T], T],
             sub: Callable[[T, T], T],
             scale: Callable[[T, int], T]) -> List[T]:
        """Inverse of ``fft`` for the same ``omega``."""
        n_inv = self.inv(len(values))
        out = self.fft(values, self.inv(omega), add, sub, scale)
        return [scale(v, n_inv) for v in out]

    def _scalar_ops(self):
        p = self.modulus
        return (
            lambda a, b: (a + b) % p,
            lambda a, b: (a - b) % p,
            lambda a, k: a * k % p,
        )

    def evaluations_to_coefficients(self, evaluations: Sequence[int]) -> List[int]:
        """Interpolate values given on the roots-of-unity domain."""
        omega = self.root_of_unity(len(evaluations))
        return self.ifft(list(evaluations), omega, *self._scalar_ops())

    def coefficients_to_evaluations(self, coefficients: Sequence[int]) -> List[int]:
        omega = self.root_of_unity(len(coefficients))
        return self.fft(list(coefficients), omega, *self._scalar_ops())

    def coset_evaluations(self, coefficients: Sequence[int], shift: int) -> List[int]:
        """Evaluate on shift * <omega> instead of <omega>."""
        p = self.modulus
        shifted = [c * s % p for c, s in zip(coefficients, self.powers(shift, len(coefficients)))]
        return self.coefficients_to_evaluations(shifted)

    def coset_coefficients(self, evaluations: Sequence[int], shift: int) -> List[int]:
        """Interpolate values given on shift * <omega>."""
        p = self.modulus
        shifted = self.evaluations_to_coefficients(evaluations)
        return [c * s % p for c, s in zip(shifted, self.powers(self.inv(shift), len(shifted)))]


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n (and >= 1)."""
    return 1 << max(n - 1, 0).bit_length()


__all__ = ["PrimeField", "next_power_of_two"]
