"""Groth16 prover for ZK data access.

Generates constant-size proofs that a private permission level satisfies the
public threshold. Witnesses are held in RAM only; every proof draws fresh
blinding scalars, so two proofs of the same witness never share an encoding.
"""

import asyncio
import secrets
import time
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np

from zkdap.circuits.constraint_system import ConstraintSystem, evaluate_lc
from zkdap.circuits.models import Proof, ProvingKey, PublicSignals
from zkdap.circuits.witness import Witness, generate
from zkdap.core.config import settings
from zkdap.core.errors import InvalidWitnessError, MalformedCircuitError
from zkdap.core.memory import memory_guard
from zkdap.crypto.backend import PairingBackend, Point, get_backend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedProvingKey:
    """Proving key with every group element decoded once."""

    constraint_system: ConstraintSystem
    backend: PairingBackend
    domain_size: int
    alpha_1: Point
    beta_1: Point
    beta_2: Point
    delta_1: Point
    delta_2: Point
    A: Tuple[Point, ...]
    B1: Tuple[Point, ...]
    B2: Tuple[Point, ...]
    C: Tuple[Point, ...]
    H: Tuple[Point, ...]


def prepare_proving_key(proving_key: ProvingKey) -> PreparedProvingKey:
    """Decode a proving key.

    Raises:
        MalformedCircuitError: If the embedded circuit does not match the key
    """
    cs = proving_key.constraint_system()
    if cs.digest != proving_key.circuit_digest:
        raise MalformedCircuitError("Proving key circuit does not match its digest")
    if cs.domain_size != proving_key.domain_size or len(proving_key.A) != cs.n_signals:
        raise MalformedCircuitError("Proving key was not derived for its embedded circuit")
    if proving_key.n_public != cs.n_public:
        raise MalformedCircuitError("Proving key public arity differs from its circuit")

    backend = get_backend(proving_key.curve)
    g1, g2 = backend.g1, backend.g2

    def points(group, encoded):
        # the proving key is a local, trusted artifact
        return tuple(group.decode(e, check_subgroup=False) for e in encoded)

    return PreparedProvingKey(
        constraint_system=cs,
        backend=backend,
        domain_size=proving_key.domain_size,
        alpha_1=g1.decode(proving_key.vk_alpha_1, check_subgroup=False),
        beta_1=g1.decode(proving_key.vk_beta_1, check_subgroup=False),
        beta_2=g2.decode(proving_key.vk_beta_2, check_subgroup=False),
        delta_1=g1.decode(proving_key.vk_delta_1, check_subgroup=False),
        delta_2=g2.decode(proving_key.vk_delta_2, check_subgroup=False),
        A=points(g1, proving_key.A),
        B1=points(g1, proving_key.B1),
        B2=points(g2, proving_key.B2),
        C=points(g1, proving_key.C),
        H=points(g1, proving_key.hExps),
    )


def _quotient(cs: ConstraintSystem, backend: PairingBackend, values: List[int], n: int) -> List[int]:
    """Coefficients of H = (A*B - C) / Z, computed on a coset of the domain."""
    field = backend.scalar_field
    p = field.modulus
    a_ev, b_ev, c_ev = [0] * n, [0] * n, [0] * n
    for i, constraint in enumerate(cs.constraints):
        a_ev[i] = evaluate_lc(constraint.a, values, p)
        b_ev[i] = evaluate_lc(constraint.b, values, p)
        c_ev[i] = evaluate_lc(constraint.c, values, p)

    shift = field.generator
    a_co = field.coset_evaluations(field.evaluations_to_coefficients(a_ev), shift)
    b_co = field.coset_evaluations(field.evaluations_to_coefficients(b_ev), shift)
    c_co = field.coset_evaluations(field.evaluations_to_coefficients(c_ev), shift)

    # Z(x) = x^n - 1 is constant on the coset
    z_inv = field.inv(pow(shift, n, p) - 1)
    h = field.coset_coefficients([(a * b - c) * z_inv % p for a, b, c in zip(a_co, b_co, c_co)], shift)
    if h[n - 1] != 0:
        raise InvalidWitnessError("Quotient polynomial has unexpected degree")
    return h[:n - 1]


def prove(witness: Witness,
          proving_key: Any,
          random_source: Optional[Any] = None) -> Tuple[Proof, PublicSignals]:
    """Create a Groth16 proof for a witness.

    Args:
        witness: Satisfying assignment from ``witness.generate``
        proving_key: ProvingKey or PreparedProvingKey
        random_source: Object with ``randrange`` for the blinding scalars
            (defaults to ``secrets.SystemRandom()``)

    Returns:
        Tuple[Proof, PublicSignals]: Proof and the ordered public signals

    Raises:
        InvalidWitnessError: If the witness is for another circuit or violates a gate
    """
    key = proving_key if isinstance(proving_key, PreparedProvingKey) else prepare_proving_key(proving_key)
    cs = key.constraint_system
    backend = key.backend
    field = backend.scalar_field
    p = field.modulus

    if witness.circuit_digest != cs.digest:
        raise InvalidWitnessError("Witness was generated for a different circuit")
    values = list(witness.values)
    if len(values) != cs.n_signals or not all(field.is_canonical(v) for v in values):
        raise InvalidWitnessError("Witness is not a canonical assignment of the circuit's signals")
    broken = cs.first_unsatisfied(values)
    if broken is not None:
        raise InvalidWitnessError(f"Witness violates constraint {broken.label or '?'}")

    h = _quotient(cs, backend, values, key.domain_size)

    rng = random_source if random_source is not None else secrets.SystemRandom()
    r = rng.randrange(1, p)
    s = rng.randrange(1, p)

    g1, g2 = backend.g1, backend.g2
    A = g1.add(g1.add(key.alpha_1, g1.msm(key.A, values)), g1.mul(key.delta_1, r))
    B2 = g2.add(g2.add(key.beta_2, g2.msm(key.B2, values)), g2.mul(key.delta_2, s))
    B1 = g1.add(g1.add(key.beta_1, g1.msm(key.B1, values)), g1.mul(key.delta_1, s))

    C = g1.add(g1.msm(key.C, values[cs.n_public + 1:]), g1.msm(key.H, h))
    C = g1.add(C, g1.add(g1.mul(A, s), g1.mul(B1, r)))
    C = g1.sub(C, g1.mul(key.delta_1, r * s % p))
    del r, s

    proof = Proof(pi_a=g1.encode(A), pi_b=g2.encode(B2), pi_c=g1.encode(C), curve=backend.name)
    public_signals = PublicSignals(
        signals=[str(v) for v in witness.public_signals],
        names=list(cs.public_names),
    )
    return proof, public_signals


class ZKProver:
    """Proof generation service with a worker pool and running statistics."""

    def __init__(self, max_workers: Optional[int] = None):
        """Initialize prover.

        Args:
            max_workers: Thread pool size (defaults to settings.prover_workers)
        """
        self._executor = ThreadPoolExecutor(max_workers=max_workers or settings.prover_workers)
        self._keys: Dict[Tuple[str, str], PreparedProvingKey] = {}
        self._generation_times: List[float] = []
        self._stats = {
            "proofs_generated": 0,
            "proofs_failed": 0,
            "avg_generation_time": 0,
            "total_generation_time": 0
        }

    def load_key(self, proving_key: ProvingKey) -> PreparedProvingKey:
        """Decode a proving key once and keep it for later proofs."""
        cache_key = (proving_key.circuit_digest, "".join(proving_key.vk_delta_1))
        prepared = self._keys.get(cache_key)
        if prepared is None:
            prepared = prepare_proving_key(proving_key)
            self._keys[cache_key] = prepared
            logger.debug(f"Loaded proving key for circuit {proving_key.circuit_digest[:12]}")
        return prepared

    def prove(self,
              private_input: Mapping[str, Any],
              public_input: Mapping[str, Any],
              proving_key: ProvingKey,
              random_source: Optional[Any] = None) -> Tuple[Proof, PublicSignals]:
        """Generate a witness and a proof synchronously."""
        start_time = time.time()
        key = self.load_key(proving_key)
        try:
            with memory_guard("proof_generation"):
                witness = generate(key.constraint_system, private_input, public_input)
                result = prove(witness, key, random_source)
                del witness
        except Exception:
            self._stats["proofs_failed"] += 1
            raise

        generation_time = time.time() - start_time
        self._stats["proofs_generated"] += 1
        self._stats["total_generation_time"] += generation_time
        self._stats["avg_generation_time"] = (
            self._stats["total_generation_time"] / self._stats["proofs_generated"]
        )
        self._generation_times.append(generation_time)
        self._generation_times = self._generation_times[-100:]
        logger.debug(f"Proof generated in {generation_time*1000:.1f}ms")
        return result

    async def generate_proof(self,
                             private_input: Mapping[str, Any],
                             public_input: Mapping[str, Any],
                             proving_key: ProvingKey,
                             random_source: Optional[Any] = None) -> Tuple[Proof, PublicSignals]:
        """Generate a proof in the worker pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor,
            self.prove,
            private_input,
            public_input,
            proving_key,
            random_source
        )

    def get_stats(self) -> Dict[str, Any]:
        """Get prover statistics."""
        return {
            **self._stats,
            "loaded_keys": len(self._keys),
            "median_generation_time": float(np.median(self._generation_times)) if self._generation_times else 0
        }

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        self._keys.clear()


# Global prover instance
prover = ZKProver()

__all__ = ["ZKProver", "prover", "prove", "prepare_proving_key", "PreparedProvingKey"]
