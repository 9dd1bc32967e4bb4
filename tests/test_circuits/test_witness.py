"""Tests for witness generation."""

import pytest

from zkdap.circuits.witness import generate
from zkdap.core.errors import MalformedCircuitError, UnsatisfiableConstraintError


def _witness(circuit, user, required=5, resource=67890):
    return generate(circuit, {"userPermission": user},
                    {"requiredPermission": required, "resourceId": resource})


class TestThresholdOutput:
    """accessGranted is 1 exactly when userPermission >= requiredPermission."""

    @pytest.mark.parametrize("user,required,expected", [
        (10, 5, 1),
        (5, 5, 1),
        (3, 5, 0),
        (4, 5, 0),
        (0, 0, 1),
        (255, 255, 1),
        (255, 0, 1),
        (0, 255, 0),
    ])
    def test_access_granted(self, circuit, user, required, expected):
        witness = _witness(circuit, user, required)
        assert witness.access_granted == expected
        assert circuit.is_satisfied(witness.values)

    def test_public_signals(self, circuit):
        witness = _witness(circuit, 10)
        assert witness.public_signals == (5, 67890, 1)
        assert witness.public_value("resourceId") == 67890
        assert witness.to_list()[:4] == ["1", "5", "67890", "1"]

    def test_deterministic(self, circuit):
        assert _witness(circuit, 7) == _witness(circuit, 7)

    def test_decimal_strings_accepted(self, circuit):
        witness = generate(circuit, {"userPermission": "10"},
                           {"requiredPermission": "5", "resourceId": "67890"})
        assert witness == _witness(circuit, 10)

    def test_resource_id_spans_the_field(self, circuit):
        largest = circuit.field_modulus - 1
        assert _witness(circuit, 10, resource=largest).public_value("resourceId") == largest

    def test_private_value_is_not_public(self, circuit):
        with pytest.raises(MalformedCircuitError):
            _witness(circuit, 10).public_value("userPermission")


class TestRejectedInput:

    @pytest.mark.parametrize("user", [-1, 256, 1 << 40])
    def test_user_permission_out_of_range(self, circuit, user):
        with pytest.raises(UnsatisfiableConstraintError, match="userPermission"):
            _witness(circuit, user)

    def test_required_permission_out_of_range(self, circuit):
        with pytest.raises(UnsatisfiableConstraintError, match="requiredPermission"):
            _witness(circuit, 10, required=256)

    def test_resource_id_not_canonical(self, circuit):
        with pytest.raises(UnsatisfiableConstraintError, match="resourceId"):
            _witness(circuit, 10, resource=circuit.field_modulus)
        with pytest.raises(UnsatisfiableConstraintError):
            _witness(circuit, 10, resource=-1)

    @pytest.mark.parametrize("value", [True, 5.0, "5.0", "five", "--5", "\u00b2", None])
    def test_non_integer(self, circuit, value):
        with pytest.raises(UnsatisfiableConstraintError):
            _witness(circuit, value)

    def test_missing_input(self, circuit):
        with pytest.raises(MalformedCircuitError, match="missing"):
            generate(circuit, {"userPermission": 10}, {"requiredPermission": 5})

    def test_unknown_input(self, circuit):
        with pytest.raises(MalformedCircuitError, match="unknown"):
            generate(circuit, {"userPermission": 10, "role": 1},
                     {"requiredPermission": 5, "resourceId": 1})

    def test_output_cannot_be_supplied(self, circuit):
        with pytest.raises(MalformedCircuitError):
            generate(circuit, {"userPermission": 3},
                     {"requiredPermission": 5, "resourceId": 1, "accessGranted": 1})

    def test_private_input_in_public_map(self, circuit):
        with pytest.raises(MalformedCircuitError):
            generate(circuit, {}, {"userPermission": 10, "requiredPermission": 5, "resourceId": 1})


class TestWitnessSecrecy:

    def test_repr_hides_values(self, circuit):
        witness = _witness(circuit, 201)
        assert repr(witness) == f"Witness(circuit={circuit.digest[:12]}, signals={circuit.n_signals})"
        assert str(witness) == repr(witness)
