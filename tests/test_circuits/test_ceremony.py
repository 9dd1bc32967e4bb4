"""Tests for the setup ceremony and its transcript."""

import json
import logging

import pytest

from zkdap.circuits.ceremony import (
    GENESIS_HASH, SetupManager, SetupTranscript, _apply_phase1, _apply_phase2, _state_hash, append,
    contribute, finalize, initialize, load_transcript, save_transcript, seal_phase1, verify_transcript,
)
from zkdap.circuits.constraint_system import threshold_circuit
from zkdap.core.errors import (
    CeremonyError, IncompleteCeremonyError, TranscriptDiscontinuityError,
)
from zkdap.crypto.backend import get_backend


def _rehash(record, **update):
    """Tamper with a record and recompute its own hash, so only the chain can catch it."""
    changed = record.model_copy(update=update)
    return changed.model_copy(update={"record_hash": changed.compute_hash()})


@pytest.fixture(scope="module")
def phase1_transcript(sealed_transcript):
    """Unsealed transcript with one phase 1 contribution."""
    return SetupTranscript(
        curve=sealed_transcript.curve,
        circuit_digest=sealed_transcript.circuit_digest,
        power=sealed_transcript.power,
        records=sealed_transcript.records[:2],
        phase1=sealed_transcript.phase1,
    )


class TestInitialize:

    def test_public_entropy_is_recomputable(self, circuit, initial_transcript):
        again = initialize(circuit)
        assert again.head_hash == initial_transcript.head_hash
        assert again.phase1 == initial_transcript.phase1

    def test_initial_record(self, circuit, initial_transcript):
        record = initial_transcript.head
        assert record.index == 0
        assert record.kind == "initial"
        assert record.previous_hash == GENESIS_HASH
        assert initial_transcript.circuit_digest == circuit.digest
        assert initial_transcript.power == circuit.domain_power == 5
        assert not initial_transcript.sealed

    def test_power_too_small(self, circuit):
        with pytest.raises(CeremonyError, match="too small"):
            initialize(circuit, size_parameter=2)

    def test_power_unsupported(self, circuit):
        with pytest.raises(CeremonyError):
            initialize(circuit, size_parameter=0)

    def test_curve_must_match_circuit(self, circuit):
        with pytest.raises(CeremonyError):
            initialize(circuit, curve="bls12_381")


class TestContribute:

    def test_chain(self, final_transcript):
        records = final_transcript.records
        assert [r.kind for r in records] == ["initial", "contribution", "seal", "contribution"]
        assert [r.phase for r in records] == [1, 1, 2, 2]
        assert [r.contributor for r in records] == ["public-entropy", "alice", "seal", "bob"]
        for prev, cur in zip(records, records[1:]):
            assert cur.previous_hash == prev.record_hash
        assert final_transcript.contributions(1) == 1
        assert final_transcript.contributions(2) == 1
        assert verify_transcript(final_transcript)

    def test_randomness_buffer_is_zeroed(self, sealed_transcript):
        buffer = bytearray(b"wipe this randomness")
        contribute(sealed_transcript, buffer, "carol")
        assert buffer == bytearray(len(buffer))

    def test_randomness_is_not_logged(self, sealed_transcript, caplog):
        with caplog.at_level(logging.DEBUG):
            contribute(sealed_transcript, b"do-not-log-me", "dave")
        assert "do-not-log-me" not in caplog.text
        assert "dave" in caplog.text

    def test_same_randomness_on_different_heads(self, sealed_transcript, final_transcript):
        one = contribute(sealed_transcript, b"same bytes")
        two = contribute(final_transcript, b"same bytes")
        assert one.head.public_key != two.head.public_key

    def test_empty_randomness(self, sealed_transcript):
        with pytest.raises(CeremonyError):
            contribute(sealed_transcript, bytearray())

    def test_does_not_mutate_input(self, sealed_transcript):
        head = sealed_transcript.head_hash
        contribute(sealed_transcript, b"another")
        assert sealed_transcript.head_hash == head
        assert len(sealed_transcript.records) == 3

    def test_tampered_record_is_rejected(self, final_transcript):
        records = list(final_transcript.records)
        records[1] = records[1].model_copy(update={"contributor": "mallory"})
        forged = final_transcript.model_copy(update={"records": records})
        with pytest.raises(TranscriptDiscontinuityError, match="hash"):
            contribute(forged, b"entropy")

    def test_broken_link_is_rejected(self, final_transcript):
        records = list(final_transcript.records)
        records[1] = _rehash(records[1], contributor="mallory")
        forged = final_transcript.model_copy(update={"records": records})
        with pytest.raises(TranscriptDiscontinuityError, match="chain"):
            verify_transcript(forged)

    def test_swapped_parameters_are_rejected(self, sealed_transcript, final_transcript):
        forged = final_transcript.model_copy(update={"phase2": sealed_transcript.phase2})
        with pytest.raises(TranscriptDiscontinuityError, match="state hash"):
            verify_transcript(forged)


class TestSeal:

    def test_seal_record(self, circuit, sealed_transcript):
        assert sealed_transcript.sealed
        assert sealed_transcript.head.kind == "seal"
        assert sealed_transcript.phase2.domain_size == circuit.domain_size
        assert len(sealed_transcript.phase2.IC) == circuit.n_public + 1
        assert len(sealed_transcript.phase2.L) == circuit.n_signals - circuit.n_public - 1
        assert len(sealed_transcript.phase2.H) == circuit.domain_size - 1

    def test_seal_without_contribution(self, circuit, initial_transcript):
        with pytest.raises(IncompleteCeremonyError):
            seal_phase1(initial_transcript, circuit)

    def test_seal_twice(self, circuit, sealed_transcript):
        with pytest.raises(CeremonyError, match="already sealed"):
            seal_phase1(sealed_transcript, circuit)

    def test_seal_for_another_circuit(self, phase1_transcript):
        with pytest.raises(TranscriptDiscontinuityError):
            seal_phase1(phase1_transcript, threshold_circuit(4))


class TestFinalize:

    def test_deterministic(self, circuit, final_transcript, keys):
        proving_key, verification_key = finalize(final_transcript, circuit)
        assert verification_key.to_bytes() == keys[1].to_bytes()
        assert proving_key == keys[0]

    def test_key_shape(self, circuit, proving_key, verification_key):
        assert verification_key.nPublic == 3
        assert verification_key.public_names == ["requiredPermission", "resourceId", "accessGranted"]
        assert verification_key.circuit_digest == circuit.digest
        assert len(verification_key.IC) == 4
        assert proving_key.constraint_system() == circuit
        # delta was moved off the generator by the phase 2 contribution
        g2 = get_backend("bn128").g2
        assert verification_key.vk_delta_2 != g2.encode(g2.generator)

    def test_without_phase2_contribution(self, circuit, sealed_transcript):
        with pytest.raises(IncompleteCeremonyError, match="delta"):
            finalize(sealed_transcript, circuit)

    def test_unsealed(self, circuit, phase1_transcript):
        with pytest.raises(IncompleteCeremonyError, match="sealed"):
            finalize(phase1_transcript, circuit)

    def test_wrong_circuit(self, final_transcript):
        with pytest.raises(TranscriptDiscontinuityError):
            finalize(final_transcript, threshold_circuit(4))


class TestAppend:

    def test_accepts_valid_phase2_contribution(self, sealed_transcript, final_transcript):
        assert append(sealed_transcript, final_transcript) is final_transcript

    def test_accepts_valid_phase1_contribution(self, initial_transcript, phase1_transcript):
        assert append(initial_transcript, phase1_transcript) is phase1_transcript

    def test_rejects_non_extension(self, final_transcript):
        with pytest.raises(TranscriptDiscontinuityError, match="exactly one"):
            append(final_transcript, final_transcript)

    def test_rejects_fork(self, sealed_transcript, final_transcript):
        fork = contribute(sealed_transcript, b"fork")
        extended = contribute(final_transcript, b"next")
        with pytest.raises(TranscriptDiscontinuityError):
            append(fork, extended)

    def test_rejects_seal(self, phase1_transcript, sealed_transcript):
        with pytest.raises(TranscriptDiscontinuityError, match="contributions"):
            append(phase1_transcript, sealed_transcript)

    def test_rejects_forged_public_key(self, sealed_transcript, final_transcript):
        g2 = get_backend("bn128").g2
        records = list(final_transcript.records)
        records[-1] = _rehash(records[-1], public_key=[g2.encode(g2.mul(g2.generator, 42))])
        forged = final_transcript.model_copy(update={"records": records})
        with pytest.raises(TranscriptDiscontinuityError, match="pairing"):
            append(sealed_transcript, forged)

    def test_rejects_phase1_parameters_behind_honest_record(self, initial_transcript, phase1_transcript):
        """Fresh powers from a known tau cannot hide behind an honest record."""
        backend = get_backend("bn128")
        known = _apply_phase1(backend, phase1_transcript.power, None, 2, 3, 5)
        records = list(phase1_transcript.records)
        records[-1] = _rehash(records[-1], state_hash=_state_hash(known))
        forged = phase1_transcript.model_copy(update={"records": records, "phase1": known})
        with pytest.raises(TranscriptDiscontinuityError, match="new checkpoint"):
            append(initial_transcript, forged)

    def test_rejects_phase2_parameters_behind_honest_record(self, sealed_transcript, final_transcript):
        known = _apply_phase2(get_backend("bn128"), sealed_transcript.phase2, 7)
        records = list(final_transcript.records)
        records[-1] = _rehash(records[-1], state_hash=_state_hash(known))
        forged = final_transcript.model_copy(update={"records": records, "phase2": known})
        with pytest.raises(TranscriptDiscontinuityError, match="new checkpoint"):
            append(sealed_transcript, forged)


class TestPersistence:

    def test_round_trip(self, final_transcript, tmp_path):
        path = save_transcript(final_transcript, tmp_path / "transcript.json")
        loaded = load_transcript(path)
        assert loaded == final_transcript
        assert loaded.head_hash == final_transcript.head_hash

    def test_edited_file(self, final_transcript, tmp_path):
        path = save_transcript(final_transcript, tmp_path / "transcript.json")
        data = json.loads(path.read_text())
        data["records"][1]["contributor"] = "mallory"
        path.write_text(json.dumps(data))
        with pytest.raises(TranscriptDiscontinuityError):
            load_transcript(path)

    def test_invalid_file(self, tmp_path):
        path = tmp_path / "transcript.json"
        path.write_text(json.dumps({"records": []}))
        with pytest.raises(TranscriptDiscontinuityError):
            load_transcript(path)

    def test_resume_in_manager(self, circuit, final_transcript, keys, tmp_path):
        save_transcript(final_transcript, tmp_path / f"{circuit.name}_transcript.json")
        manager = SetupManager(circuit, build_dir=tmp_path)
        manager.load()
        assert manager.finalize()[1].to_bytes() == keys[1].to_bytes()

    def test_manager_load_other_circuit(self, final_transcript, tmp_path):
        path = save_transcript(final_transcript, tmp_path / "t.json")
        manager = SetupManager(threshold_circuit(4), build_dir=tmp_path)
        with pytest.raises(TranscriptDiscontinuityError):
            manager.load(path)

    def test_manager_requires_initialize(self, circuit, tmp_path):
        manager = SetupManager(circuit, build_dir=tmp_path)
        with pytest.raises(CeremonyError):
            manager.contribute(b"entropy")
        with pytest.raises(CeremonyError):
            manager.save()


class TestDeepAudit:

    @pytest.mark.slow
    def test_full_transcript(self, circuit, final_transcript):
        assert verify_transcript(final_transcript, circuit, deep=True)

    def test_phase1_transcript(self, phase1_transcript):
        assert verify_transcript(phase1_transcript, deep=True)

    def test_sealed_transcript_needs_circuit(self, final_transcript):
        with pytest.raises(CeremonyError):
            verify_transcript(final_transcript, deep=True)

    def test_forged_initial_record(self, circuit, phase1_transcript):
        records = list(phase1_transcript.records)
        records[0] = _rehash(records[0], contributor="not-public")
        records[1] = _rehash(records[1], previous_hash=records[0].record_hash)
        forged = phase1_transcript.model_copy(update={"records": records})
        with pytest.raises(TranscriptDiscontinuityError, match="public entropy"):
            verify_transcript(forged, deep=True)
