"""Field arithmetic and pairing backends."""

from zkdap.crypto.field import PrimeField, next_power_of_two
from zkdap.crypto.backend import CurveGroup, PairingBackend, PyEccBackend, get_backend

__all__ = [
    "PrimeField", "next_power_of_two",
    "CurveGroup", "PairingBackend", "PyEccBackend", "get_backend",
]
