"""Tests for the access gateway."""

import threading

import pytest

from zkdap.circuits.models import Proof
from zkdap.core.errors import (
    MalformedProofError, PublicSignalMismatchError, UnregisteredResourceError, ZKDAPError,
)
from zkdap.crypto.backend import get_backend
from zkdap.gateway import AccessGateway, AccessReason


@pytest.fixture
def gateway(verification_key):
    gw = AccessGateway(verification_key)
    gw.register(67890, 5, "secret")
    return gw


class TestRequestAccess:
    """Decisions for the 67890 / threshold 5 resource."""

    def test_sufficient_permission(self, gateway, granted_proof):
        decision = gateway.request_access(67890, *granted_proof)
        assert decision.granted
        assert decision.reason == AccessReason.GRANTED
        assert decision.as_tuple() == (True, "secret")

    def test_insufficient_permission(self, gateway, denied_proof):
        decision = gateway.request_access(67890, *denied_proof)
        assert not decision.granted
        assert decision.reason == AccessReason.PREDICATE_FALSE
        assert decision.as_tuple() == (False, None)

    def test_equal_permission(self, gateway, make_proof):
        decision = gateway.request_access(67890, *make_proof(5))
        assert decision.as_tuple() == (True, "secret")

    def test_invalid_proof(self, gateway, granted_proof):
        proof, public = granted_proof
        g1 = get_backend("bn128").g1
        shifted = g1.encode(g1.add(g1.decode(proof.pi_c), g1.generator))
        decision = gateway.request_access(67890, proof.model_copy(update={"pi_c": shifted}), public)
        assert decision.reason == AccessReason.INVALID_PROOF
        assert decision.payload is None

    def test_forged_grant(self, gateway, denied_proof):
        """Relabelling a denial as a grant fails the pairing check."""
        proof, _ = denied_proof
        decision = gateway.request_access(67890, proof, ["5", "67890", "1"])
        assert decision.reason == AccessReason.INVALID_PROOF

    def test_unregistered_resource(self, gateway, granted_proof):
        with pytest.raises(UnregisteredResourceError):
            gateway.request_access(11111, *granted_proof)
        with pytest.raises(KeyError):
            gateway.request_access(11111, *granted_proof)

    def test_malformed_proof_raises(self, gateway, granted_proof):
        proof, public = granted_proof
        with pytest.raises(MalformedProofError):
            gateway.request_access(67890, proof, ["5", "67890"])
        data = bytearray(proof.to_bytes())
        data[40] ^= 1
        with pytest.raises(MalformedProofError):
            gateway.request_access(67890, Proof.from_bytes(bytes(data)), public)

    def test_no_verification_key(self, granted_proof):
        gw = AccessGateway()
        gw.register(67890, 5, "secret")
        with pytest.raises(ZKDAPError, match="No verification key"):
            gw.request_access(67890, *granted_proof)

    def test_key_per_request(self, verification_key, granted_proof):
        gw = AccessGateway()
        gw.register(67890, 5, "secret")
        assert gw.request_access(67890, *granted_proof, verification_key=verification_key).granted

    def test_request_key_must_match_trusted_key(self, gateway, verification_key, granted_proof):
        other = verification_key.model_copy(update={"circuit_digest": "0" * 64})
        with pytest.raises(ZKDAPError, match="not the trusted key"):
            gateway.request_access(67890, *granted_proof, verification_key=other)
        assert gateway.request_access(67890, *granted_proof, verification_key=verification_key).granted


class TestBinding:
    """A proof only counts for the resource and threshold it was made for."""

    def test_cross_resource_replay(self, gateway, granted_proof):
        gateway.register(11111, 5, "other secret")
        decision = gateway.request_access(11111, *granted_proof)
        assert decision.reason == AccessReason.SIGNAL_MISMATCH
        assert decision.payload is None

    def test_lower_stored_threshold(self, gateway, make_proof):
        """A proof against threshold 3 does not open a resource requiring 5."""
        decision = gateway.request_access(67890, *make_proof(4, required_permission=3))
        assert decision.reason == AccessReason.SIGNAL_MISMATCH

    def test_threshold_raised_after_proof(self, gateway, granted_proof):
        gateway.register(67890, 8, "secret")
        assert gateway.request_access(67890, *granted_proof).reason == AccessReason.SIGNAL_MISMATCH

    def test_strict_binding(self, verification_key, granted_proof):
        gw = AccessGateway(verification_key, strict_binding=True)
        gw.register(11111, 5, "other secret")
        with pytest.raises(PublicSignalMismatchError):
            gw.request_access(11111, *granted_proof)
        assert gw.get_stats()["decisions"]["signal_mismatch"] == 1


class TestRegistry:

    def test_register_and_get(self, gateway):
        resource = gateway.get(67890)
        assert resource.required_permission == 5
        assert resource.payload == "secret"
        assert 67890 in gateway
        assert len(gateway) == 1
        assert gateway.get(1) is None
        assert "secret" not in repr(resource)

    def test_replace(self, gateway):
        gateway.register(67890, 7, "new secret")
        assert gateway.get(67890).required_permission == 7
        assert gateway.get(67890).payload == "new secret"
        assert len(gateway) == 1

    def test_snapshot_is_a_copy(self, gateway):
        snapshot = gateway.resources()
        gateway.register(2, 1, "x")
        assert 2 not in snapshot

    @pytest.mark.parametrize("resource_id,required,error", [
        (-1, 5, ValueError),
        (1, -5, ValueError),
        (True, 5, TypeError),
        ("1", 5, TypeError),
        (1, 2 ** 300, ValueError),
    ])
    def test_rejects_bad_values(self, gateway, resource_id, required, error):
        with pytest.raises(error):
            gateway.register(resource_id, required, None)

    def test_threshold_must_fit_circuit_width(self, gateway, verification_key):
        assert verification_key.bit_width == 8
        with pytest.raises(ValueError, match="8-bit"):
            gateway.register(1, 256, None)
        assert gateway.register(1, 255, None).required_permission == 255
        assert AccessGateway().register(1, 256, None).required_permission == 256

    def test_subscribe(self, gateway):
        events = []
        unsubscribe = gateway.subscribe(events.append)
        gateway.register(1, 2, "a")
        gateway.register(1, 3, "b")
        unsubscribe()
        gateway.register(1, 4, "c")

        assert len(events) == 2
        assert not events[0].replaced
        assert events[1].replaced
        assert events[1].previous.required_permission == 2
        assert events[1].resource.required_permission == 3

    def test_failing_listener(self, gateway, caplog):
        def broken(event):
            raise RuntimeError("listener down")

        gateway.subscribe(broken)
        gateway.register(3, 1, None)
        assert gateway.get(3) is not None
        assert "listener down" in caplog.text

    def test_rotate_verification_key(self, verification_key):
        gw = AccessGateway()
        assert gw.rotate_verification_key(verification_key) is None
        assert gw.rotate_verification_key(verification_key) is verification_key
        assert gw.verification_key is verification_key

    def test_stats(self, gateway, denied_proof, granted_proof):
        gateway.register(11111, 5, None)
        gateway.request_access(11111, *granted_proof)
        stats = gateway.get_stats()
        assert stats["resources"] == 2
        assert stats["decisions"]["signal_mismatch"] == 1
        assert stats["decisions"]["granted"] == 0


class TestConcurrentRegistration:

    def test_readers_never_see_torn_entries(self):
        """Each registration writes a matching (threshold, payload) pair."""
        gateway = AccessGateway()
        stop = threading.Event()
        torn = []

        def writer():
            for i in range(500):
                gateway.register(42, i, f"payload-{i}")
            stop.set()

        def reader():
            while not stop.is_set():
                resource = gateway.get(42)
                if resource is not None and resource.payload != f"payload-{resource.required_permission}":
                    torn.append(resource)

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert torn == []
        assert gateway.get(42).required_permission == 499
