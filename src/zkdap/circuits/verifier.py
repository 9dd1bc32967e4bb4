"""Groth16 verifier for ZK data access.

Verification is one pairing-product check over a verification key and the
ordered public signals:

    e(-A, B) * e(alpha, beta) * e(vk_x, gamma) * e(C, delta) == 1
    vk_x = IC[0] + sum_i signals[i] * IC[i + 1]

The routine is parameterized by the verification key and the pairing backend
named in it; nothing is generated per circuit. All functions here are pure and
safe to call concurrently.
"""

import asyncio
import hashlib
import time
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import ValidationError

from zkdap.circuits.models import Proof, PublicSignals, VerificationKey
from zkdap.core.config import settings
from zkdap.core.errors import InvalidPointError, MalformedProofError
from zkdap.core.memory import memory_guard
from zkdap.crypto.backend import PairingBackend, Point, get_backend

logger = logging.getLogger(__name__)

ProofLike = Union[Proof, Dict[str, Any]]
SignalsLike = Union[PublicSignals, Sequence[Any]]


@dataclass
class VerificationResult:
    """Result of proof verification."""

    valid: bool
    proof_hash: str
    verification_time_ms: float
    error: Optional[str] = None


@dataclass(frozen=True)
class PreparedVerificationKey:
    """Verification key with decoded group elements."""

    backend: PairingBackend
    fingerprint: str
    circuit_digest: str
    public_names: Tuple[str, ...]
    alpha_1: Point
    beta_2: Point
    gamma_2: Point
    delta_2: Point
    IC: Tuple[Point, ...]

    @property
    def n_public(self) -> int:
        return len(self.public_names)


@lru_cache(maxsize=32)
def _prepare(vk_bytes: bytes) -> PreparedVerificationKey:
    vk = VerificationKey.model_validate_json(vk_bytes)
    backend = get_backend(vk.curve)
    g1, g2 = backend.g1, backend.g2
    return PreparedVerificationKey(
        backend=backend,
        fingerprint=vk.fingerprint,
        circuit_digest=vk.circuit_digest,
        public_names=tuple(vk.public_names),
        alpha_1=g1.decode(vk.vk_alpha_1),
        beta_2=g2.decode(vk.vk_beta_2),
        gamma_2=g2.decode(vk.vk_gamma_2),
        delta_2=g2.decode(vk.vk_delta_2),
        IC=tuple(g1.decode(p) for p in vk.IC),
    )


def prepare_verification_key(verification_key: Union[VerificationKey, PreparedVerificationKey]) -> PreparedVerificationKey:
    """Decode (and cache) a verification key.

    Raises:
        InvalidPointError: If the key holds a malformed group element
    """
    if isinstance(verification_key, PreparedVerificationKey):
        return verification_key
    return _prepare(verification_key.to_bytes())


def parse_proof(proof: ProofLike, key: PreparedVerificationKey) -> Tuple[Point, Point, Point]:
    """Decode and validate the proof's group elements.

    Raises:
        MalformedProofError: Wrong shape, coordinates out of range, off-curve or
            outside the prime-order subgroup
    """
    if not isinstance(proof, Proof):
        try:
            proof = Proof.model_validate(proof)
        except ValidationError as e:
            raise MalformedProofError(f"Invalid proof object: {e.error_count()} errors") from e
    if proof.protocol != "groth16":
        raise MalformedProofError(f"Unsupported protocol: {proof.protocol}")
    if proof.curve != key.backend.name:
        raise MalformedProofError(f"Proof is for curve {proof.curve}, key is for {key.backend.name}")
    try:
        return proof.points(key.backend, check_subgroup=settings.verify_subgroup_checks)
    except InvalidPointError as e:
        raise MalformedProofError(str(e)) from e


def parse_public_signals(public_signals: SignalsLike, key: PreparedVerificationKey) -> List[int]:
    """Check arity, naming and range of the public signals.

    Raises:
        MalformedProofError: If they do not match the key's declared public interface
    """
    if not isinstance(public_signals, PublicSignals):
        try:
            public_signals = PublicSignals(signals=list(public_signals))
        except (ValidationError, TypeError) as e:
            raise MalformedProofError(f"Invalid public signals: {e}") from e
    if len(public_signals) != key.n_public:
        raise MalformedProofError(
            f"Expected {key.n_public} public signals {list(key.public_names)}, got {len(public_signals)}"
        )
    if public_signals.names is not None and tuple(public_signals.names) != key.public_names:
        raise MalformedProofError(
            f"Public signals must be ordered {list(key.public_names)}, got {public_signals.names}"
        )
    values = public_signals.to_int_list()
    if any(v >= key.backend.curve_order for v in values):
        raise MalformedProofError("Public signal is not a canonical field element")
    return values


def pairing_check(points: Tuple[Point, Point, Point], signals: Sequence[int],
                  key: PreparedVerificationKey) -> bool:
    """The Groth16 equation for decoded inputs."""
    A, B, C = points
    g1 = key.backend.g1
    vk_x = g1.add(key.IC[0], g1.msm(key.IC[1:], signals))
    return key.backend.pairing_product_is_one([
        (g1.neg(A), B),
        (key.alpha_1, key.beta_2),
        (vk_x, key.gamma_2),
        (C, key.delta_2),
    ])


def verify_strict(proof: ProofLike, public_signals: SignalsLike,
                  verification_key: Union[VerificationKey, PreparedVerificationKey]) -> bool:
    """Verify, raising on structural problems.

    Returns:
        bool: Whether the pairing equation holds

    Raises:
        MalformedProofError: Malformed proof elements or public signals
    """
    key = prepare_verification_key(verification_key)
    points = parse_proof(proof, key)
    signals = parse_public_signals(public_signals, key)
    return pairing_check(points, signals, key)


def verify(proof: ProofLike, public_signals: SignalsLike,
           verification_key: Union[VerificationKey, PreparedVerificationKey]) -> bool:
    """Verify a proof; malformed input is a failed verification, never a crash."""
    try:
        return verify_strict(proof, public_signals, verification_key)
    except MalformedProofError as e:
        logger.warning(f"Rejected malformed proof: {e}")
        return False


def proof_hash(proof: ProofLike) -> str:
    """SHA-256 of the binary proof encoding ("" if it has none)."""
    try:
        if not isinstance(proof, Proof):
            proof = Proof.model_validate(proof)
        return hashlib.sha256(proof.to_bytes()).hexdigest()
    except (ValidationError, MalformedProofError, ValueError):
        return ""


def check(proof: ProofLike, public_signals: SignalsLike,
          verification_key: Union[VerificationKey, PreparedVerificationKey]) -> VerificationResult:
    """Verify and report timing and the reason for a rejection."""
    start_time = time.time()
    error = None
    try:
        valid = verify_strict(proof, public_signals, verification_key)
        if not valid:
            error = "Pairing check failed"
    except MalformedProofError as e:
        valid = False
        error = str(e)
    return VerificationResult(
        valid=valid,
        proof_hash=proof_hash(proof),
        verification_time_ms=(time.time() - start_time) * 1000,
        error=error
    )


class ZKVerifier:
    """Verification service with batch verification and statistics."""

    def __init__(self, max_workers: Optional[int] = None):
        """Initialize verifier with an empty verification key cache."""
        self._executor = ThreadPoolExecutor(max_workers=max_workers or settings.prover_workers)
        self._verification_keys: Dict[str, PreparedVerificationKey] = {}
        self._verification_times: List[float] = []
        self._stats = {
            "verifications": 0,
            "valid_proofs": 0,
            "invalid_proofs": 0,
            "avg_verification_time_ms": 0,
            "batch_verifications": 0
        }

    def load_key(self, verification_key: VerificationKey) -> PreparedVerificationKey:
        fingerprint = verification_key.fingerprint
        if fingerprint not in self._verification_keys:
            self._verification_keys[fingerprint] = prepare_verification_key(verification_key)
        return self._verification_keys[fingerprint]

    def _record(self, result: VerificationResult) -> VerificationResult:
        self._stats["verifications"] += 1
        if result.valid:
            self._stats["valid_proofs"] += 1
        else:
            self._stats["invalid_proofs"] += 1
        self._verification_times.append(result.verification_time_ms)
        self._verification_times = self._verification_times[-100:]
        self._stats["avg_verification_time_ms"] = float(np.mean(self._verification_times))
        return result

    def verify_sync(self, proof: ProofLike, public_signals: SignalsLike,
                    verification_key: VerificationKey) -> VerificationResult:
        with memory_guard("proof_verification"):
            key = self.load_key(verification_key)
            return self._record(check(proof, public_signals, key))

    async def verify(self, proof: ProofLike, public_signals: SignalsLike,
                     verification_key: VerificationKey) -> VerificationResult:
        """Verify a single proof in the worker pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, self.verify_sync, proof, public_signals, verification_key
        )

    async def verify_batch(self, items: Sequence[Tuple[ProofLike, SignalsLike]],
                           verification_key: VerificationKey) -> List[VerificationResult]:
        """Verify multiple (proof, public signals) pairs concurrently."""
        if not items:
            return []
        tasks = [self.verify(proof, signals, verification_key) for proof, signals in items]
        results = await asyncio.gather(*tasks)
        self._stats["batch_verifications"] += 1
        return list(results)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "cached_keys": len(self._verification_keys),
            "success_rate": self._stats["valid_proofs"] / self._stats["verifications"] if self._stats["verifications"] > 0 else 0
        }

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        self._verification_keys.clear()


# Global verifier instance
verifier = ZKVerifier()

__all__ = [
    "ZKVerifier", "verifier", "VerificationResult", "PreparedVerificationKey",
    "verify", "verify_strict", "check", "prepare_verification_key",
    "parse_proof", "parse_public_signals", "pairing_check", "proof_hash",
]
