"""Multi-party setup ceremony.

The ceremony follows the snarkjs flow the circuit was originally built with
(``powersoftau new/contribute/prepare phase2``, ``groth16 setup``,
``zkey contribute``), modelled as an explicit hash-chained list of records
instead of a pile of intermediate files:

    initialize      public-entropy powers of tau (record 0, anyone can recompute it)
    contribute      phase 1: multiply in secret tau, alpha, beta
    seal_phase1     deterministic: Lagrange basis, per-signal queries, delta = 1
    contribute      phase 2: multiply in secret delta
    finalize        deterministic: proving key + verification key

Each record stores the hash of the previous record, the hash of the parameters
it produced, the contributor's public key (G2 images of its secret factors)
and a checkpoint of the elements a pairing audit needs. The transcript is the
resumption point: it can be saved after any step and extended later, by
another party, on another machine.

Contributions to one transcript must be serialized by the caller.
"""

import hashlib
import logging
import secrets
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from zkdap.circuits.constraint_system import ConstraintSystem
from zkdap.circuits.models import (
    G1Encoded, G2Encoded, ProvingKey, VerificationKey, canonical_json,
)
from zkdap.core.config import settings
from zkdap.core.errors import (
    CeremonyError, IncompleteCeremonyError, TranscriptDiscontinuityError,
)
from zkdap.core.memory import SecretInput, memory_guard, secret_buffer
from zkdap.crypto.backend import CurveGroup, PairingBackend, Point, get_backend

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64
_INITIAL_LABEL = b"zkdap/powers-of-tau/initial"
_CONTRIBUTION_LABEL = b"zkdap/contribution"


class PowersOfTau(BaseModel):
    """Phase 1 parameters: [tau^i]G1, [tau^i]G2, [alpha tau^i]G1, [beta tau^i]G1, [beta]G2."""

    model_config = ConfigDict(frozen=True)

    power: int
    tau_g1: List[G1Encoded]
    tau_g2: List[G2Encoded]
    alpha_tau_g1: List[G1Encoded]
    beta_tau_g1: List[G1Encoded]
    beta_g2: G2Encoded


class CircuitParameters(BaseModel):
    """Phase 2 parameters, specialised to one constraint system."""

    model_config = ConfigDict(frozen=True)

    domain_size: int
    alpha_g1: G1Encoded
    beta_g1: G1Encoded
    beta_g2: G2Encoded
    gamma_g2: G2Encoded
    delta_g1: G1Encoded
    delta_g2: G2Encoded
    A: List[G1Encoded]
    B1: List[G1Encoded]
    B2: List[G2Encoded]
    IC: List[G1Encoded]
    L: List[G1Encoded]
    H: List[G1Encoded]


class ContributionRecord(BaseModel):
    """One link of the transcript chain."""

    model_config = ConfigDict(frozen=True)

    index: int
    phase: Literal[1, 2]
    kind: Literal["initial", "contribution", "seal"]
    contributor: str = ""
    previous_hash: str
    state_hash: str
    public_key: List[G2Encoded] = Field(default_factory=list)
    checkpoint: Dict[str, Any] = Field(default_factory=dict)
    record_hash: str

    def compute_hash(self) -> str:
        return hashlib.sha256(canonical_json(self.model_dump(exclude={"record_hash"}))).hexdigest()


class SetupTranscript(BaseModel):
    """Ordered contribution records plus the parameters the last record produced."""

    model_config = ConfigDict(frozen=True)

    curve: str = "bn128"
    circuit_digest: str
    power: int
    records: List[ContributionRecord]
    phase1: PowersOfTau
    phase2: Optional[CircuitParameters] = None

    @property
    def head(self) -> ContributionRecord:
        return self.records[-1]

    @property
    def head_hash(self) -> str:
        return self.records[-1].record_hash

    @property
    def sealed(self) -> bool:
        return self.phase2 is not None

    @property
    def phase(self) -> int:
        return 2 if self.sealed else 1

    def contributions(self, phase: int) -> int:
        """Number of secret contributions made in ``phase``."""
        return sum(1 for r in self.records if r.kind == "contribution" and r.phase == phase)


# ---------------------------------------------------------------- helpers


def _state_hash(params: BaseModel) -> str:
    return hashlib.sha256(canonical_json(params.model_dump())).hexdigest()


def _make_record(**fields: Any) -> ContributionRecord:
    fields.setdefault("public_key", [])
    fields.setdefault("checkpoint", {})
    record = ContributionRecord(**fields, record_hash="")
    return record.model_copy(update={"record_hash": record.compute_hash()})


def _decode_all(group: CurveGroup, encoded: Sequence[Any]) -> List[Point]:
    # transcript state is produced by this module; subgroup checks happen in the audit
    return [group.decode(e, check_subgroup=False) for e in encoded]


def _encode_all(group: CurveGroup, points: Sequence[Point]) -> List[Any]:
    return [group.encode(p) for p in points]


def _derive_scalars(seed: bytes, count: int, order: int) -> List[int]:
    """Expand a seed into ``count`` non-zero scalars."""
    out = []
    counter = 0
    while len(out) < count:
        digest = hashlib.sha512(seed + counter.to_bytes(4, "big")).digest()
        counter += 1
        value = int.from_bytes(digest, "big") % order
        if value:
            out.append(value)
    return out


def _phase1_checkpoint(params: PowersOfTau) -> Dict[str, Any]:
    return {
        "tau_g1": params.tau_g1[1],
        "tau_g2": params.tau_g2[1],
        "alpha_g1": params.alpha_tau_g1[0],
        "beta_g1": params.beta_tau_g1[0],
        "beta_g2": params.beta_g2,
    }


def _phase2_checkpoint(params: CircuitParameters) -> Dict[str, Any]:
    return {"delta_g1": params.delta_g1, "delta_g2": params.delta_g2}


def _apply_phase1(backend: PairingBackend, power: int, prev: Optional[PowersOfTau],
                  tau: int, alpha: int, beta: int) -> PowersOfTau:
    """Multiply secret factors into phase 1 parameters (``prev=None`` is tau = alpha = beta = 1)."""
    g1, g2 = backend.g1, backend.g2
    q = backend.curve_order
    n = 1 << power
    tau_powers = backend.scalar_field.powers(tau, 2 * n - 1)

    if prev is None:
        tau_g1 = [g1.mul(g1.generator, k) for k in tau_powers]
        tau_g2 = [g2.mul(g2.generator, k) for k in tau_powers[:n]]
        alpha_tau_g1 = [g1.mul(g1.generator, alpha * k % q) for k in tau_powers[:n]]
        beta_tau_g1 = [g1.mul(g1.generator, beta * k % q) for k in tau_powers[:n]]
        beta_g2 = g2.mul(g2.generator, beta)
    else:
        tau_g1 = [g1.mul(p, k) for p, k in zip(_decode_all(g1, prev.tau_g1), tau_powers)]
        tau_g2 = [g2.mul(p, k) for p, k in zip(_decode_all(g2, prev.tau_g2), tau_powers)]
        alpha_tau_g1 = [g1.mul(p, alpha * k % q)
                        for p, k in zip(_decode_all(g1, prev.alpha_tau_g1), tau_powers)]
        beta_tau_g1 = [g1.mul(p, beta * k % q)
                       for p, k in zip(_decode_all(g1, prev.beta_tau_g1), tau_powers)]
        beta_g2 = g2.mul(g2.decode(prev.beta_g2, check_subgroup=False), beta)

    return PowersOfTau(
        power=power,
        tau_g1=_encode_all(g1, tau_g1),
        tau_g2=_encode_all(g2, tau_g2),
        alpha_tau_g1=_encode_all(g1, alpha_tau_g1),
        beta_tau_g1=_encode_all(g1, beta_tau_g1),
        beta_g2=g2.encode(beta_g2),
    )


def _apply_phase2(backend: PairingBackend, prev: CircuitParameters, delta: int) -> CircuitParameters:
    g1, g2 = backend.g1, backend.g2
    delta_inv = backend.scalar_field.inv(delta)
    update = prev.model_dump()
    update.update(
        delta_g1=g1.encode(g1.mul(g1.decode(prev.delta_g1, check_subgroup=False), delta)),
        delta_g2=g2.encode(g2.mul(g2.decode(prev.delta_g2, check_subgroup=False), delta)),
        L=[g1.encode(g1.mul(p, delta_inv)) for p in _decode_all(g1, prev.L)],
        H=[g1.encode(g1.mul(p, delta_inv)) for p in _decode_all(g1, prev.H)],
    )
    return CircuitParameters(**update)


def _public_key(backend: PairingBackend, factors: Sequence[int]) -> List[Any]:
    g2 = backend.g2
    return [g2.encode(g2.mul(g2.generator, f)) for f in factors]


def _initial(backend: PairingBackend, circuit_digest: str, power: int) -> Tuple[PowersOfTau, ContributionRecord]:
    seed = hashlib.sha512(_INITIAL_LABEL + bytes.fromhex(circuit_digest) + power.to_bytes(2, "big")).digest()
    tau, alpha, beta = _derive_scalars(seed, 3, backend.curve_order)
    params = _apply_phase1(backend, power, None, tau, alpha, beta)
    record = _make_record(
        index=0,
        phase=1,
        kind="initial",
        contributor="public-entropy",
        previous_hash=GENESIS_HASH,
        state_hash=_state_hash(params),
        public_key=_public_key(backend, (tau, alpha, beta)),
        checkpoint=_phase1_checkpoint(params),
    )
    return params, record


def _seal(backend: PairingBackend, phase1: PowersOfTau, cs: ConstraintSystem) -> CircuitParameters:
    """Specialise powers of tau to ``cs``; deterministic."""
    g1, g2 = backend.g1, backend.g2
    field = backend.scalar_field
    n = cs.domain_size
    omega = field.root_of_unity(n)

    def ops(group):
        return group.add, group.sub, group.mul

    # L_i(tau) for the Lagrange basis over <omega>, in the exponent
    lag_g1 = field.ifft(_decode_all(g1, phase1.tau_g1[:n]), omega, *ops(g1))
    lag_g2 = field.ifft(_decode_all(g2, phase1.tau_g2[:n]), omega, *ops(g2))
    alpha_lag = field.ifft(_decode_all(g1, phase1.alpha_tau_g1[:n]), omega, *ops(g1))
    beta_lag = field.ifft(_decode_all(g1, phase1.beta_tau_g1[:n]), omega, *ops(g1))

    columns: Dict[str, List[List[Tuple[int, int]]]] = {
        part: [[] for _ in range(cs.n_signals)] for part in ("a", "b", "c")
    }
    for gate, constraint in enumerate(cs.constraints):
        for part in ("a", "b", "c"):
            for index, coeff in getattr(constraint, part):
                columns[part][index].append((gate, coeff))

    def combine(group, basis, column):
        return group.msm([basis[i] for i, _ in column], [c for _, c in column])

    A, B1, B2, K = [], [], [], []
    for j in range(cs.n_signals):
        a, b, c = columns["a"][j], columns["b"][j], columns["c"][j]
        A.append(combine(g1, lag_g1, a))
        B1.append(combine(g1, lag_g1, b))
        B2.append(combine(g2, lag_g2, b))
        # beta * A_j(tau) + alpha * B_j(tau) + C_j(tau)
        K.append(g1.add(g1.add(combine(g1, beta_lag, a), combine(g1, alpha_lag, b)), combine(g1, lag_g1, c)))

    tau_g1 = _decode_all(g1, phase1.tau_g1[:2 * n - 1])
    # tau^k * Z(tau) with Z(x) = x^n - 1
    H = [g1.sub(tau_g1[n + k], tau_g1[k]) for k in range(n - 1)]

    split = cs.n_public + 1
    return CircuitParameters(
        domain_size=n,
        alpha_g1=phase1.alpha_tau_g1[0],
        beta_g1=phase1.beta_tau_g1[0],
        beta_g2=phase1.beta_g2,
        gamma_g2=g2.encode(g2.generator),
        delta_g1=g1.encode(g1.generator),
        delta_g2=g2.encode(g2.generator),
        A=_encode_all(g1, A),
        B1=_encode_all(g1, B1),
        B2=_encode_all(g2, B2),
        IC=_encode_all(g1, K[:split]),
        L=_encode_all(g1, K[split:]),
        H=_encode_all(g1, H),
    )


def _check_circuit(transcript: SetupTranscript, cs: ConstraintSystem) -> None:
    if transcript.circuit_digest != cs.digest:
        raise TranscriptDiscontinuityError(
            f"Transcript belongs to circuit {transcript.circuit_digest[:12]}, not {cs.digest[:12]}"
        )


# -------------------------------------------------------------- operations


def initialize(constraint_system: ConstraintSystem, size_parameter: Optional[int] = None,
               curve: Optional[str] = None) -> SetupTranscript:
    """Start a ceremony from public, recomputable entropy.

    Args:
        constraint_system: Circuit the ceremony is for
        size_parameter: Ceremony power k (2^k gates); smallest sufficient if None
        curve: Pairing backend name (defaults to settings.curve)

    Raises:
        CeremonyError: If 2^k cannot hold the circuit's gates
    """
    backend = get_backend(curve or settings.curve)
    if backend.curve_order != constraint_system.field_modulus:
        raise CeremonyError(f"Circuit field does not match curve {backend.name}")
    power = size_parameter if size_parameter is not None else settings.ceremony_power
    if power is None:
        power = max(constraint_system.domain_power, 1)
    if power < 1 or power > backend.scalar_field.two_adicity:
        raise CeremonyError(f"Ceremony power {power} is not supported by {backend.name}")
    if (1 << power) < constraint_system.domain_size:
        raise CeremonyError(
            f"Ceremony power {power} too small: circuit needs 2^{constraint_system.domain_power} gates"
        )

    with memory_guard("ceremony_initialize"):
        params, record = _initial(backend, constraint_system.digest, power)
    logger.info(f"Initialized ceremony for {constraint_system.name} (power {power}, curve {backend.name})")
    return SetupTranscript(
        curve=backend.name,
        circuit_digest=constraint_system.digest,
        power=power,
        records=[record],
        phase1=params,
    )


def contribute(transcript: SetupTranscript, private_randomness: SecretInput,
               contributor: str = "") -> SetupTranscript:
    """Extend the transcript with one secret contribution.

    The secret factors are derived from ``private_randomness`` and the current
    head hash, so the same randomness never yields the same factors on two
    transcripts. A mutable ``private_randomness`` buffer is zeroed on return;
    neither the randomness nor the factors are returned or logged.

    Raises:
        TranscriptDiscontinuityError: If ``transcript`` does not chain
        CeremonyError: If the randomness is empty
    """
    if not private_randomness:
        raise CeremonyError("Contribution randomness must not be empty")
    verify_transcript(transcript)
    backend = get_backend(transcript.curve)
    phase = transcript.phase
    count = 3 if phase == 1 else 1

    with memory_guard("ceremony_contribution"):
        with secret_buffer(private_randomness) as buffer:
            hasher = hashlib.sha512(_CONTRIBUTION_LABEL + bytes.fromhex(transcript.head_hash))
            hasher.update(buffer)
            factors = _derive_scalars(hasher.digest(), count, backend.curve_order)
            del hasher

        if phase == 1:
            phase1 = _apply_phase1(backend, transcript.power, transcript.phase1, *factors)
            phase2 = None
            state_hash, checkpoint = _state_hash(phase1), _phase1_checkpoint(phase1)
        else:
            phase1 = transcript.phase1
            phase2 = _apply_phase2(backend, transcript.phase2, factors[0])
            state_hash, checkpoint = _state_hash(phase2), _phase2_checkpoint(phase2)
        public_key = _public_key(backend, factors)
        del factors

    record = _make_record(
        index=len(transcript.records),
        phase=phase,
        kind="contribution",
        contributor=contributor,
        previous_hash=transcript.head_hash,
        state_hash=state_hash,
        public_key=public_key,
        checkpoint=checkpoint,
    )
    logger.info(f"Phase {phase} contribution #{record.index} by {contributor or 'anonymous'}: {record.record_hash[:16]}")
    return SetupTranscript(
        curve=transcript.curve,
        circuit_digest=transcript.circuit_digest,
        power=transcript.power,
        records=list(transcript.records) + [record],
        phase1=phase1,
        phase2=phase2,
    )


def seal_phase1(transcript: SetupTranscript, constraint_system: ConstraintSystem) -> SetupTranscript:
    """Close phase 1 and derive the circuit-specific parameters.

    Raises:
        IncompleteCeremonyError: If nobody contributed to phase 1
        CeremonyError: If the transcript is already sealed
    """
    verify_transcript(transcript, constraint_system)
    if transcript.sealed:
        raise CeremonyError("Phase 1 is already sealed")
    if transcript.contributions(1) == 0:
        raise IncompleteCeremonyError("Phase 1 needs at least one contribution before sealing")
    if (1 << transcript.power) < constraint_system.domain_size:
        raise CeremonyError(f"Ceremony power {transcript.power} is too small for {constraint_system.name}")

    backend = get_backend(transcript.curve)
    with memory_guard("ceremony_seal"):
        phase2 = _seal(backend, transcript.phase1, constraint_system)
    record = _make_record(
        index=len(transcript.records),
        phase=2,
        kind="seal",
        contributor="seal",
        previous_hash=transcript.head_hash,
        state_hash=_state_hash(phase2),
        checkpoint=_phase2_checkpoint(phase2),
    )
    logger.info(f"Sealed phase 1 for {constraint_system.name}: {record.record_hash[:16]}")
    return SetupTranscript(
        curve=transcript.curve,
        circuit_digest=transcript.circuit_digest,
        power=transcript.power,
        records=list(transcript.records) + [record],
        phase1=transcript.phase1,
        phase2=phase2,
    )


def finalize(transcript: SetupTranscript,
             constraint_system: ConstraintSystem) -> Tuple[ProvingKey, VerificationKey]:
    """Derive the key pair. Deterministic for a given transcript and circuit.

    Raises:
        IncompleteCeremonyError: If the transcript is not sealed or has no phase 2 contribution
        TranscriptDiscontinuityError: If the transcript does not chain
    """
    verify_transcript(transcript, constraint_system)
    if not transcript.sealed:
        raise IncompleteCeremonyError("Phase 1 must be sealed before keys can be derived")
    if transcript.contributions(2) == 0:
        raise IncompleteCeremonyError("Phase 2 needs at least one contribution (delta is still 1)")

    cs = constraint_system
    params = transcript.phase2
    proving_key = ProvingKey(
        curve=transcript.curve,
        circuit=cs.to_dict(),
        circuit_digest=cs.digest,
        domain_size=params.domain_size,
        n_public=cs.n_public,
        vk_alpha_1=params.alpha_g1,
        vk_beta_1=params.beta_g1,
        vk_beta_2=params.beta_g2,
        vk_delta_1=params.delta_g1,
        vk_delta_2=params.delta_g2,
        A=params.A,
        B1=params.B1,
        B2=params.B2,
        C=params.L,
        hExps=params.H,
    )
    verification_key = VerificationKey(
        curve=transcript.curve,
        nPublic=cs.n_public,
        public_names=list(cs.public_names),
        circuit_digest=cs.digest,
        bit_width=cs.bit_width,
        vk_alpha_1=params.alpha_g1,
        vk_beta_2=params.beta_g2,
        vk_gamma_2=params.gamma_g2,
        vk_delta_2=params.delta_g2,
        IC=params.IC,
    )
    logger.info(f"Finalized keys for {cs.name} after {len(transcript.records)} records "
                f"(vk {verification_key.fingerprint[:16]})")
    return proving_key, verification_key


# ------------------------------------------------------------------- audit


class _RatioBatch:
    """Accumulates same-ratio checks into one pairing product.

    Each check (a1, b1) ~ (a2, b2) contributes e(r*a1, b2) * e(-r*b1, a2) with a
    fresh random weight r; terms sharing a G2 element share one Miller loop.
    """

    def __init__(self, backend: PairingBackend):
        self.backend = backend
        self.count = 0
        self._terms: Dict[Tuple[int, ...], List[Point]] = {}

    def _term(self, q: Point, p: Point) -> None:
        key = tuple(self.backend.g2.to_ints(q))
        if key in self._terms:
            self._terms[key][1] = self.backend.g1.add(self._terms[key][1], p)
        else:
            self._terms[key] = [q, p]

    def add(self, g1_pair: Tuple[Point, Point], g2_pair: Tuple[Point, Point]) -> None:
        g1 = self.backend.g1
        weight = secrets.randbelow(1 << 128) + 1
        self._term(g2_pair[1], g1.mul(g1_pair[0], weight))
        self._term(g2_pair[0], g1.neg(g1.mul(g1_pair[1], weight)))
        self.count += 1

    def holds(self) -> bool:
        if not self._terms:
            return True
        return self.backend.pairing_product_is_one([(p, q) for q, p in self._terms.values()])


def _random_weights(count: int) -> List[int]:
    return [secrets.randbelow(1 << 128) + 1 for _ in range(count)]


def _link_checks(batch: _RatioBatch, prev: ContributionRecord, cur: ContributionRecord) -> None:
    """Pairing checks tying a contribution's checkpoint to the previous one."""
    g1, g2 = batch.backend.g1, batch.backend.g2
    pk = [g2.decode(e) for e in cur.public_key]

    def point(record, name):
        group = g2 if name.endswith("_g2") else g1
        return group.decode(record.checkpoint[name])

    if cur.phase == 1:
        if len(pk) != 3:
            raise TranscriptDiscontinuityError(f"Record {cur.index} has a malformed public key")
        for name, factor in (("tau_g1", pk[0]), ("alpha_g1", pk[1]), ("beta_g1", pk[2])):
            batch.add((point(prev, name), point(cur, name)), (g2.generator, factor))
        batch.add((g1.generator, point(cur, "tau_g1")), (g2.generator, point(cur, "tau_g2")))
        batch.add((g1.generator, point(cur, "beta_g1")), (g2.generator, point(cur, "beta_g2")))
    else:
        if len(pk) != 1:
            raise TranscriptDiscontinuityError(f"Record {cur.index} has a malformed public key")
        batch.add((point(prev, "delta_g1"), point(cur, "delta_g1")), (g2.generator, pk[0]))
        batch.add((g1.generator, point(cur, "delta_g1")), (g2.generator, point(cur, "delta_g2")))


def _powers_checks(batch: _RatioBatch, params: PowersOfTau) -> None:
    """Every phase 1 vector is a geometric sequence in the same tau."""
    g1, g2 = batch.backend.g1, batch.backend.g2
    tau_g1 = _decode_all(g1, params.tau_g1)
    tau_g2 = _decode_all(g2, params.tau_g2)
    tau_1, tau_2 = tau_g1[1], tau_g2[1]

    for vector in (tau_g1, _decode_all(g1, params.alpha_tau_g1), _decode_all(g1, params.beta_tau_g1)):
        weights = _random_weights(len(vector) - 1)
        batch.add((g1.msm(vector[:-1], weights), g1.msm(vector[1:], weights)), (g2.generator, tau_2))
    weights = _random_weights(len(tau_g2) - 1)
    batch.add((g1.generator, tau_1), (g2.msm(tau_g2[:-1], weights), g2.msm(tau_g2[1:], weights)))


def _rescaling_checks(batch: _RatioBatch, before: CircuitParameters, after: CircuitParameters) -> None:
    """``after`` only differs from ``before`` by a delta rescaling."""
    fixed = {"delta_g1", "delta_g2", "L", "H"}
    if before.model_dump(exclude=fixed) != after.model_dump(exclude=fixed):
        raise TranscriptDiscontinuityError("Phase 2 contribution changed more than delta")
    if len(before.L) != len(after.L) or len(before.H) != len(after.H):
        raise TranscriptDiscontinuityError("Phase 2 contribution changed the query sizes")
    g1, g2 = batch.backend.g1, batch.backend.g2
    old = _decode_all(g1, before.L + before.H)
    new = _decode_all(g1, after.L + after.H)
    weights = _random_weights(len(old))
    # new * delta_after = old * delta_before
    batch.add(
        (g1.msm(new, weights), g1.msm(old, weights)),
        (g2.decode(before.delta_g2, check_subgroup=False), g2.decode(after.delta_g2, check_subgroup=False)),
    )


def _check_chain(transcript: SetupTranscript) -> None:
    records = transcript.records
    if not records:
        raise TranscriptDiscontinuityError("Transcript has no records")
    first = records[0]
    if first.kind != "initial" or first.previous_hash != GENESIS_HASH:
        raise TranscriptDiscontinuityError("Transcript does not start with an initial record")

    seal_seen = False
    for i, record in enumerate(records):
        if record.index != i:
            raise TranscriptDiscontinuityError(f"Record {i} carries index {record.index}")
        if record.record_hash != record.compute_hash():
            raise TranscriptDiscontinuityError(f"Record {i} hash does not match its contents")
        if i > 0:
            if record.previous_hash != records[i - 1].record_hash:
                raise TranscriptDiscontinuityError(f"Record {i} does not chain from record {i - 1}")
            if record.kind == "initial":
                raise TranscriptDiscontinuityError(f"Record {i} is a second initial record")
        if record.kind == "seal":
            if seal_seen:
                raise TranscriptDiscontinuityError("Transcript is sealed twice")
            seal_seen = True
        if record.phase != (2 if seal_seen else 1):
            raise TranscriptDiscontinuityError(f"Record {i} is in the wrong phase")

    if seal_seen != transcript.sealed:
        raise TranscriptDiscontinuityError("Seal record and phase 2 parameters disagree")
    n = 1 << transcript.power
    phase1 = transcript.phase1
    if phase1.power != transcript.power or len(phase1.tau_g1) != 2 * n - 1 or any(
            len(v) != n for v in (phase1.tau_g2, phase1.alpha_tau_g1, phase1.beta_tau_g1)):
        raise TranscriptDiscontinuityError("Phase 1 parameters have the wrong size")
    last_phase1 = [r for r in records if r.phase == 1][-1]
    if last_phase1.state_hash != _state_hash(transcript.phase1):
        raise TranscriptDiscontinuityError("Phase 1 parameters do not match the recorded state hash")
    if transcript.sealed and transcript.head.state_hash != _state_hash(transcript.phase2):
        raise TranscriptDiscontinuityError("Phase 2 parameters do not match the recorded state hash")


def verify_transcript(transcript: SetupTranscript,
                      constraint_system: Optional[ConstraintSystem] = None,
                      deep: bool = False) -> bool:
    """Audit a transcript.

    The default audit checks the hash chain and that the current parameters
    are the ones the head record committed to. ``deep=True`` also recomputes
    the public initial record and the seal step and runs pairing checks on
    every contribution link and on the structure of the current parameters.

    Raises:
        TranscriptDiscontinuityError: On any failed check (fatal, do not retry)
    """
    _check_chain(transcript)
    if constraint_system is not None:
        _check_circuit(transcript, constraint_system)
    if not deep:
        return True

    if transcript.sealed and constraint_system is None:
        raise CeremonyError("Auditing a sealed transcript needs its constraint system")

    backend = get_backend(transcript.curve)
    with memory_guard("transcript_audit"):
        _, initial = _initial(backend, transcript.circuit_digest, transcript.power)
        if initial.record_hash != transcript.records[0].record_hash:
            raise TranscriptDiscontinuityError("Initial record was not derived from public entropy")

        batch = _RatioBatch(backend)
        phase1 = [r for r in transcript.records if r.phase == 1]
        for prev, cur in zip(phase1, phase1[1:]):
            _link_checks(batch, prev, cur)
        if _phase1_checkpoint(transcript.phase1) != phase1[-1].checkpoint:
            raise TranscriptDiscontinuityError("Phase 1 parameters do not match the last checkpoint")
        _powers_checks(batch, transcript.phase1)

        if transcript.sealed:
            sealed = _seal(backend, transcript.phase1, constraint_system)
            phase2 = [r for r in transcript.records if r.phase == 2]
            if phase2[0].state_hash != _state_hash(sealed):
                raise TranscriptDiscontinuityError("Seal record does not match the recomputed seal")
            for prev, cur in zip(phase2, phase2[1:]):
                _link_checks(batch, prev, cur)
            if _phase2_checkpoint(transcript.phase2) != phase2[-1].checkpoint:
                raise TranscriptDiscontinuityError("Phase 2 parameters do not match the last checkpoint")
            _rescaling_checks(batch, sealed, transcript.phase2)

        if not batch.holds():
            raise TranscriptDiscontinuityError(f"Pairing audit failed ({batch.count} checks)")
    logger.info(f"Deep audit passed for {len(transcript.records)} records ({batch.count} pairing checks)")
    return True


def append(prior: SetupTranscript, candidate: SetupTranscript) -> SetupTranscript:
    """Accept a contribution made elsewhere on top of ``prior``.

    Raises:
        TranscriptDiscontinuityError: Unless ``candidate`` extends ``prior`` by exactly
            one valid contribution record
    """
    _check_chain(prior)
    _check_chain(candidate)
    if (candidate.circuit_digest, candidate.power, candidate.curve) != (prior.circuit_digest, prior.power, prior.curve):
        raise TranscriptDiscontinuityError("Candidate belongs to a different ceremony")
    if len(candidate.records) != len(prior.records) + 1:
        raise TranscriptDiscontinuityError(
            f"Candidate must add exactly one record ({len(prior.records)} -> {len(candidate.records)})"
        )
    if [r.record_hash for r in candidate.records[:-1]] != [r.record_hash for r in prior.records]:
        raise TranscriptDiscontinuityError("Candidate rewrites earlier records")
    new = candidate.head
    if new.previous_hash != prior.head_hash:
        raise TranscriptDiscontinuityError("Candidate does not chain from the prior head")
    if new.kind != "contribution":
        raise TranscriptDiscontinuityError(f"Only contributions can be appended, got {new.kind}")

    backend = get_backend(prior.curve)
    batch = _RatioBatch(backend)
    _link_checks(batch, prior.head, new)
    if new.phase == 1:
        if _phase1_checkpoint(candidate.phase1) != new.checkpoint:
            raise TranscriptDiscontinuityError("Phase 1 parameters do not match the new checkpoint")
        _powers_checks(batch, candidate.phase1)
    else:
        if not prior.sealed:
            raise TranscriptDiscontinuityError("Phase 2 contribution on an unsealed transcript")
        if _state_hash(candidate.phase1) != _state_hash(prior.phase1):
            raise TranscriptDiscontinuityError("Phase 2 contribution changed phase 1 parameters")
        if _phase2_checkpoint(candidate.phase2) != new.checkpoint:
            raise TranscriptDiscontinuityError("Phase 2 parameters do not match the new checkpoint")
        _rescaling_checks(batch, prior.phase2, candidate.phase2)
    if not batch.holds():
        raise TranscriptDiscontinuityError(f"Contribution #{new.index} fails its pairing checks")

    logger.info(f"Appended contribution #{new.index} by {new.contributor or 'anonymous'}")
    return candidate


def save_transcript(transcript: SetupTranscript, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(transcript.model_dump_json(), encoding="utf-8")
    logger.debug(f"Transcript saved to {path}")
    return path


def load_transcript(path: Union[str, Path]) -> SetupTranscript:
    """Load a transcript; the chain is checked before it is returned."""
    try:
        transcript = SetupTranscript.model_validate_json(Path(path).read_text(encoding="utf-8"))
    except ValidationError as e:
        raise TranscriptDiscontinuityError(f"Invalid transcript file {path}: {e}") from e
    verify_transcript(transcript)
    return transcript


class SetupManager:
    """Runs the ceremony for one constraint system and keeps its artifacts."""

    def __init__(self, constraint_system: ConstraintSystem, build_dir: Optional[Union[str, Path]] = None):
        """
        Args:
            constraint_system: Circuit the keys are for
            build_dir: Directory for transcript and key files
        """
        self.constraint_system = constraint_system
        self.build_dir = Path(build_dir or settings.build_dir)
        self._transcript: Optional[SetupTranscript] = None
        logger.debug(f"SetupManager for {constraint_system.name} in {self.build_dir}")

    @property
    def transcript(self) -> Optional[SetupTranscript]:
        return self._transcript

    @property
    def transcript_path(self) -> Path:
        return self.build_dir / f"{self.constraint_system.name}_transcript.json"

    def initialize(self, size_parameter: Optional[int] = None) -> SetupTranscript:
        self._transcript = initialize(self.constraint_system, size_parameter)
        return self._transcript

    def contribute(self, private_randomness: SecretInput, contributor: str = "") -> SetupTranscript:
        if self._transcript is None:
            raise CeremonyError("Ceremony has not been initialized")
        self._transcript = contribute(self._transcript, private_randomness, contributor)
        return self._transcript

    def seal(self) -> SetupTranscript:
        if self._transcript is None:
            raise CeremonyError("Ceremony has not been initialized")
        self._transcript = seal_phase1(self._transcript, self.constraint_system)
        return self._transcript

    def finalize(self) -> Tuple[ProvingKey, VerificationKey]:
        if self._transcript is None:
            raise CeremonyError("Ceremony has not been initialized")
        return finalize(self._transcript, self.constraint_system)

    def run(self, phase1_randomness: Sequence[SecretInput], phase2_randomness: Sequence[SecretInput],
            size_parameter: Optional[int] = None) -> Tuple[ProvingKey, VerificationKey]:
        """Full ceremony with local contributions, in order."""
        self.initialize(size_parameter)
        for i, randomness in enumerate(phase1_randomness):
            self.contribute(randomness, f"phase1-{i + 1}")
        self.seal()
        for i, randomness in enumerate(phase2_randomness):
            self.contribute(randomness, f"phase2-{i + 1}")
        return self.finalize()

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        if self._transcript is None:
            raise CeremonyError("Nothing to save")
        return save_transcript(self._transcript, path or self.transcript_path)

    def load(self, path: Optional[Union[str, Path]] = None) -> SetupTranscript:
        transcript = load_transcript(path or self.transcript_path)
        _check_circuit(transcript, self.constraint_system)
        self._transcript = transcript
        return transcript


__all__ = [
    "SetupManager", "SetupTranscript", "ContributionRecord", "PowersOfTau", "CircuitParameters",
    "initialize", "contribute", "seal_phase1", "finalize", "append",
    "verify_transcript", "save_transcript", "load_transcript", "GENESIS_HASH",
]
