"""Pytest configuration and fixtures for zkdap tests.

The ceremony is expensive in pure Python, so one small circuit (8-bit
permissions, 32-gate domain) and one key pair are shared by the whole session.
"""

import random

import pytest

from zkdap.circuits.ceremony import contribute, finalize, initialize, seal_phase1
from zkdap.circuits.constraint_system import threshold_circuit
from zkdap.circuits.prover import prepare_proving_key, prove
from zkdap.circuits.witness import generate

BIT_WIDTH = 8
RESOURCE_ID = 67890
REQUIRED_PERMISSION = 5


@pytest.fixture(scope="session")
def circuit():
    return threshold_circuit(BIT_WIDTH)


@pytest.fixture(scope="session")
def initial_transcript(circuit):
    return initialize(circuit)


@pytest.fixture(scope="session")
def sealed_transcript(circuit, initial_transcript):
    transcript = contribute(initial_transcript, bytearray(b"phase one test entropy"), "alice")
    return seal_phase1(transcript, circuit)


@pytest.fixture(scope="session")
def final_transcript(sealed_transcript):
    return contribute(sealed_transcript, bytearray(b"phase two test entropy"), "bob")


@pytest.fixture(scope="session")
def keys(circuit, final_transcript):
    return finalize(final_transcript, circuit)


@pytest.fixture(scope="session")
def proving_key(keys):
    return keys[0]


@pytest.fixture(scope="session")
def verification_key(keys):
    return keys[1]


@pytest.fixture(scope="session")
def prepared_key(proving_key):
    return prepare_proving_key(proving_key)


@pytest.fixture(scope="session")
def make_proof(circuit, prepared_key):
    """Factory: (proof, public signals) for a permission level."""
    def _make(user_permission, required_permission=REQUIRED_PERMISSION,
              resource_id=RESOURCE_ID, random_source=None):
        witness = generate(
            circuit,
            {"userPermission": user_permission},
            {"requiredPermission": required_permission, "resourceId": resource_id},
        )
        return prove(witness, prepared_key, random_source)
    return _make


@pytest.fixture(scope="session")
def granted_proof(make_proof):
    """Proof for userPermission=10 against resource 67890 / threshold 5."""
    return make_proof(10, random_source=random.Random(10))


@pytest.fixture(scope="session")
def denied_proof(make_proof):
    """Proof for userPermission=3 against resource 67890 / threshold 5."""
    return make_proof(3, random_source=random.Random(3))
