"""Error taxonomy for ZK data access.

Structural errors (malformed circuit, broken transcript, unsatisfiable input,
malformed proof) are raised to the caller. A clean verification failure or a
public-signal mismatch is an ordinary ``granted=False`` outcome and is only
raised as an exception when a caller explicitly asks for strict behaviour.
"""


class ZKDAPError(Exception):
    """Base class for every error raised by zkdap."""


class MalformedCircuitError(ZKDAPError):
    """Signal declarations are inconsistent with the gates or with consumed public signals."""


class CeremonyError(ZKDAPError):
    """The setup ceremony cannot proceed with the given parameters."""


class TranscriptDiscontinuityError(CeremonyError):
    """A contribution does not chain from the transcript it claims to extend.

    Fatal and non-retryable: it indicates tampering or a mixed-up transcript.
    """


class IncompleteCeremonyError(CeremonyError):
    """Keys were requested from a transcript that has not finished both phases."""


class UnsatisfiableConstraintError(ZKDAPError):
    """An input value falls outside the domain the circuit can represent."""


class InvalidWitnessError(ZKDAPError):
    """A witness does not satisfy the constraint system of the proving key."""


class InvalidPointError(ZKDAPError, ValueError):
    """An encoded group element is out of range, off-curve or outside the subgroup."""


class MalformedProofError(ZKDAPError):
    """A proof or its public signals cannot be checked (bad encoding, wrong arity)."""


class PublicSignalMismatchError(ZKDAPError):
    """Public signals are bound to a different resource or threshold than requested."""


class UnregisteredResourceError(ZKDAPError, KeyError):
    """Access was requested for a resource id that was never registered."""

    def __str__(self) -> str:
        return Exception.__str__(self)


__all__ = [
    "ZKDAPError",
    "MalformedCircuitError",
    "CeremonyError",
    "TranscriptDiscontinuityError",
    "IncompleteCeremonyError",
    "UnsatisfiableConstraintError",
    "InvalidWitnessError",
    "InvalidPointError",
    "MalformedProofError",
    "PublicSignalMismatchError",
    "UnregisteredResourceError",
]
