"""Tests for the py_ecc pairing backend."""

import pytest

from zkdap.core.errors import InvalidPointError
from zkdap.crypto.backend import PairingBackend, get_backend


@pytest.fixture(scope="module")
def backend():
    return get_backend("bn128")


class TestBackendRegistry:

    def test_shared_instance(self):
        assert get_backend("bn128") is get_backend("bn128")
        assert isinstance(get_backend("bn128"), PairingBackend)

    def test_unknown_curve(self):
        with pytest.raises(ValueError, match="Unsupported curve"):
            get_backend("secp256k1")

    def test_bn128_parameters(self, backend):
        assert backend.curve_order == 21888242871839275222246405745257275088548364400416034343698204186575808495617
        assert backend.g1.coordinate_bytes == 32
        assert backend.scalar_field.modulus == backend.curve_order


class TestPointEncoding:
    """snarkjs-style decimal encoding."""

    def test_g1_generator(self, backend):
        g1 = backend.g1
        assert g1.encode(g1.generator) == ["1", "2", "1"]
        assert g1.eq(g1.decode(["1", "2", "1"]), g1.generator)
        assert g1.eq(g1.decode(["1", "2"]), g1.generator)

    def test_g1_identity(self, backend):
        g1 = backend.g1
        assert g1.encode(g1.zero) == ["0", "1", "0"]
        assert g1.is_zero(g1.decode(["0", "1", "0"]))

    def test_g2_round_trip(self, backend):
        g2 = backend.g2
        point = g2.mul(g2.generator, 12345)
        encoded = g2.encode(point)
        assert encoded[2] == ["1", "0"]
        assert g2.eq(g2.decode(encoded), point)

    def test_g2_identity(self, backend):
        g2 = backend.g2
        assert g2.encode(g2.zero) == [["0", "0"], ["1", "0"], ["0", "0"]]
        assert g2.is_zero(g2.decode(g2.encode(g2.zero)))

    def test_off_curve_point(self, backend):
        with pytest.raises(InvalidPointError, match="not on the curve"):
            backend.g1.decode(["1", "3", "1"])

    def test_coordinate_out_of_range(self, backend):
        p = backend.field_modulus
        with pytest.raises(InvalidPointError, match="out of range"):
            backend.g1.decode([str(p + 1), "2", "1"])

    def test_non_decimal_coordinate(self, backend):
        with pytest.raises(InvalidPointError):
            backend.g1.decode(["0x01", "2", "1"])
        with pytest.raises(InvalidPointError):
            backend.g1.decode(["-1", "2", "1"])
        with pytest.raises(InvalidPointError):
            backend.g1.decode([True, "2", "1"])

    def test_wrong_shape(self, backend):
        with pytest.raises(InvalidPointError):
            backend.g1.decode(["1"])
        with pytest.raises(InvalidPointError):
            backend.g2.decode([["1", "2"]])
        with pytest.raises(InvalidPointError):
            backend.g2.decode(None)

    def test_non_affine_point(self, backend):
        with pytest.raises(InvalidPointError, match="not affine"):
            backend.g1.decode(["1", "2", "2"])

    def test_to_ints_from_ints(self, backend):
        g1 = backend.g1
        point = g1.mul(g1.generator, 99)
        assert g1.eq(g1.from_ints(g1.to_ints(point)), point)
        assert g1.to_ints(g1.zero) == [0, 0]


class TestGroupOps:

    def test_msm(self, backend):
        g1 = backend.g1
        g = g1.generator
        points = [g, g1.mul(g, 2), g1.mul(g, 3)]
        assert g1.eq(g1.msm(points, [4, 0, 5]), g1.mul(g, 4 + 15))

    def test_sub(self, backend):
        g1 = backend.g1
        g = g1.generator
        assert g1.is_zero(g1.sub(g1.mul(g, 7), g1.mul(g, 7)))

    def test_mul_reduces_scalar(self, backend):
        g1 = backend.g1
        assert g1.eq(g1.mul(g1.generator, backend.curve_order + 3), g1.mul(g1.generator, 3))


class TestPairing:

    def test_bilinearity(self, backend):
        g1, g2 = backend.g1, backend.g2
        a, b = 6, 7
        pairs = [
            (g1.mul(g1.generator, a), g2.mul(g2.generator, b)),
            (g1.neg(g1.mul(g1.generator, a * b)), g2.generator),
        ]
        assert backend.pairing_product_is_one(pairs)

    def test_identity_pairs_are_skipped(self, backend):
        assert backend.pairing_product_is_one([(backend.g1.zero, backend.g2.generator)])
