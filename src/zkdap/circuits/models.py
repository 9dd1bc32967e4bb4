"""Artifact models.

Proofs, public signals and keys are pydantic models whose JSON layout matches
what snarkjs writes (``proof.json``, ``public.json``, ``verification_key.json``),
so artifacts can be exchanged with the circom toolchain and the Solidity
verifier it exports.
"""

import hashlib
import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from zkdap.circuits.constraint_system import ConstraintSystem
from zkdap.core.errors import MalformedProofError
from zkdap.crypto.backend import PairingBackend, get_backend

G1Encoded = List[str]
G2Encoded = List[List[str]]


def canonical_json(data: Any) -> bytes:
    """Stable serialization used for hashing and byte comparisons."""
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


class Proof(BaseModel):
    """
    A Groth16 proof.

    Compatible with the snarkjs proof format.
    """

    model_config = ConfigDict(frozen=True)

    # Proof points (G1, G2, G1)
    pi_a: G1Encoded = Field(..., description="Proof point A (G1)")
    pi_b: G2Encoded = Field(..., description="Proof point B (G2)")
    pi_c: G1Encoded = Field(..., description="Proof point C (G1)")

    # Protocol info
    protocol: str = Field(default="groth16")
    curve: str = Field(default="bn128")

    def points(self, backend: Optional[PairingBackend] = None, check_subgroup: bool = True) -> Tuple[Any, Any, Any]:
        """Decode (A, B, C); raises InvalidPointError on malformed elements."""
        backend = backend or get_backend(self.curve)
        return (
            backend.g1.decode(self.pi_a, check_subgroup),
            backend.g2.decode(self.pi_b, check_subgroup),
            backend.g1.decode(self.pi_c, check_subgroup),
        )

    def _coordinates(self) -> List[int]:
        try:
            a = [int(v) for v in self.pi_a[:2]]
            b = [int(v) for row in self.pi_b[:2] for v in row]
            c = [int(v) for v in self.pi_c[:2]]
        except ValueError as e:
            raise MalformedProofError(f"Proof coordinate is not an integer: {e}") from e
        if len(a) != 2 or len(b) != 4 or len(c) != 2:
            raise MalformedProofError("Proof points have the wrong shape")
        # the identity is encoded with all-zero coordinates
        if len(self.pi_a) == 3 and self.pi_a[2] == "0":
            a = [0, 0]
        if len(self.pi_c) == 3 and self.pi_c[2] == "0":
            c = [0, 0]
        if len(self.pi_b) == 3 and self.pi_b[2] == ["0", "0"]:
            b = [0, 0, 0, 0]
        return a + b + c

    def to_bytes(self) -> bytes:
        """Fixed-size big-endian encoding: A.x A.y B.x0 B.x1 B.y0 B.y1 C.x C.y."""
        width = get_backend(self.curve).g1.coordinate_bytes
        try:
            return b"".join(v.to_bytes(width, "big") for v in self._coordinates())
        except OverflowError as e:
            raise MalformedProofError(f"Proof coordinate too large: {e}") from e

    @classmethod
    def from_bytes(cls, data: bytes, curve: str = "bn128") -> "Proof":
        """Inverse of ``to_bytes``. Points are validated on verification, not here."""
        width = get_backend(curve).g1.coordinate_bytes
        if len(data) != 8 * width:
            raise MalformedProofError(f"Proof must be {8 * width} bytes, got {len(data)}")
        v = [int.from_bytes(data[i * width:(i + 1) * width], "big") for i in range(8)]

        def g1(x, y):
            return ["0", "1", "0"] if x == y == 0 else [str(x), str(y), "1"]

        if not any(v[2:6]):
            b = [["0", "0"], ["1", "0"], ["0", "0"]]
        else:
            b = [[str(v[2]), str(v[3])], [str(v[4]), str(v[5])], ["1", "0"]]
        return cls(pi_a=g1(v[0], v[1]), pi_b=b, pi_c=g1(v[6], v[7]), curve=curve)

    def to_calldata(self) -> List[int]:
        """Solidity calldata (8 uint256); G2 coordinates in EVM (c1, c0) order."""
        a0, a1, bx0, bx1, by0, by1, c0, c1 = self._coordinates()
        return [a0, a1, bx1, bx0, by1, by0, c0, c1]

    def to_hex(self) -> str:
        """Convert to hex string for storage."""
        return json.dumps(self.model_dump()).encode().hex()

    @classmethod
    def from_hex(cls, hex_str: str) -> "Proof":
        """Create from hex string."""
        try:
            data = json.loads(bytes.fromhex(hex_str).decode())
        except ValueError as e:
            raise MalformedProofError(f"Invalid proof hex: {e}") from e
        return cls(**data)


class PublicSignals(BaseModel):
    """Public inputs and outputs of a proof, in the circuit's declared order."""

    model_config = ConfigDict(frozen=True)

    signals: List[str] = Field(..., description="Public signals as decimal strings")
    names: Optional[List[str]] = Field(default=None, description="Declared names, if labelled")

    @field_validator("signals", mode="before")
    @classmethod
    def stringify(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return [str(s) if isinstance(s, int) and not isinstance(s, bool) else s for s in v]
        return v

    @field_validator("signals")
    @classmethod
    def decimal_only(cls, v: List[str]) -> List[str]:
        for s in v:
            if not (s.isascii() and s.isdigit()):
                raise ValueError(f"Public signal {s!r} is not a non-negative decimal integer")
        return v

    @model_validator(mode="after")
    def names_match(self) -> "PublicSignals":
        if self.names is not None and len(self.names) != len(self.signals):
            raise ValueError("names and signals must have the same length")
        return self

    def __len__(self) -> int:
        return len(self.signals)

    def to_int_list(self) -> List[int]:
        """Convert to list of integers."""
        return [int(s) for s in self.signals]

    def as_dict(self, names: Optional[List[str]] = None) -> Dict[str, int]:
        """Map declared names to values."""
        names = names if names is not None else self.names
        if names is None or len(names) != len(self.signals):
            raise MalformedProofError("Public signals cannot be matched to names")
        return dict(zip(names, self.to_int_list()))

    def permuted(self, order: List[int]) -> "PublicSignals":
        """Copy with signals reordered by index; names stay in place."""
        return PublicSignals(signals=[self.signals[i] for i in order], names=self.names)


class VerificationKey(BaseModel):
    """Groth16 verification key, snarkjs ``verification_key.json`` layout."""

    model_config = ConfigDict(frozen=True)

    protocol: str = "groth16"
    curve: str = "bn128"
    nPublic: int = Field(..., ge=0)
    public_names: List[str]
    circuit_digest: str
    bit_width: Optional[int] = Field(default=None, ge=1)
    vk_alpha_1: G1Encoded
    vk_beta_2: G2Encoded
    vk_gamma_2: G2Encoded
    vk_delta_2: G2Encoded
    IC: List[G1Encoded]

    @model_validator(mode="after")
    def arity(self) -> "VerificationKey":
        if len(self.IC) != self.nPublic + 1:
            raise ValueError(f"IC must have nPublic + 1 = {self.nPublic + 1} points")
        if len(self.public_names) != self.nPublic:
            raise ValueError("public_names must list nPublic names")
        return self

    def to_bytes(self) -> bytes:
        return canonical_json(self.model_dump())

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self.to_bytes()).hexdigest()


class ProvingKey(BaseModel):
    """Groth16 proving key. Embeds the constraint system, like a ``.zkey``."""

    model_config = ConfigDict(frozen=True)

    protocol: str = "groth16"
    curve: str = "bn128"
    circuit: Dict[str, Any]
    circuit_digest: str
    domain_size: int
    n_public: int
    vk_alpha_1: G1Encoded
    vk_beta_1: G1Encoded
    vk_beta_2: G2Encoded
    vk_delta_1: G1Encoded
    vk_delta_2: G2Encoded
    A: List[G1Encoded]
    B1: List[G1Encoded]
    B2: List[G2Encoded]
    C: List[G1Encoded] = Field(..., description="L query for private signals")
    hExps: List[G1Encoded] = Field(..., description="tau^k * Z(tau) / delta")

    @model_validator(mode="after")
    def lengths(self) -> "ProvingKey":
        n = len(self.A)
        if len(self.B1) != n or len(self.B2) != n:
            raise ValueError("A, B1 and B2 must have one entry per signal")
        if len(self.C) != n - self.n_public - 1:
            raise ValueError("C must have one entry per private signal")
        if len(self.hExps) != self.domain_size - 1:
            raise ValueError("hExps must have domain_size - 1 entries")
        return self

    def constraint_system(self) -> ConstraintSystem:
        return ConstraintSystem.from_dict(self.circuit)


__all__ = [
    "Proof", "PublicSignals", "VerificationKey", "ProvingKey",
    "G1Encoded", "G2Encoded", "canonical_json",
]
