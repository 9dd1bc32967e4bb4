"""Constraint system, ceremony, prover and verifier for ZK data access."""

from zkdap.circuits.constraint_system import ConstraintSystem, Visibility, threshold_circuit
from zkdap.circuits.models import Proof, PublicSignals, ProvingKey, VerificationKey
from zkdap.circuits.witness import Witness, generate
from zkdap.circuits.ceremony import (
    SetupManager, SetupTranscript, initialize, contribute, seal_phase1, finalize,
    append, verify_transcript, save_transcript, load_transcript,
)
from zkdap.circuits.prover import ZKProver, prover, prove
from zkdap.circuits.verifier import ZKVerifier, VerificationResult, verifier, verify, verify_strict, check

__all__ = [
    "ConstraintSystem", "Visibility", "threshold_circuit",
    "Proof", "PublicSignals", "ProvingKey", "VerificationKey",
    "Witness", "generate",
    "SetupManager", "SetupTranscript", "initialize", "contribute", "seal_phase1",
    "finalize", "append", "verify_transcript", "save_transcript", "load_transcript",
    "ZKProver", "prover", "prove",
    "ZKVerifier", "VerificationResult", "verifier", "verify", "verify_strict", "check",
]
