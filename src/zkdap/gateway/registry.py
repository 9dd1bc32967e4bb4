"""Resource registry that gates access on verified proofs.

The gateway owns a map of resource id -> Resource and the verification key
currently trusted. A proof only unlocks a resource when all of the following
hold: its public ``requiredPermission`` and ``resourceId`` equal the stored
requirement and the requested id, the pairing check passes, and the proven
``accessGranted`` output is 1.

Writes (register, key rotation) are serialized by a lock and publish a new
immutable snapshot; reads never take the lock and always see either the old
or the new entry, never a mix.
"""

import time
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from zkdap.circuits.models import VerificationKey
from zkdap.circuits.verifier import (
    ProofLike, SignalsLike, pairing_check, parse_proof, parse_public_signals,
    prepare_verification_key,
)
from zkdap.core.config import settings
from zkdap.core.errors import (
    MalformedCircuitError, PublicSignalMismatchError, UnregisteredResourceError, ZKDAPError,
)
from zkdap.crypto.backend import get_backend

logger = logging.getLogger(__name__)

REQUIRED_SIGNAL = "requiredPermission"
RESOURCE_SIGNAL = "resourceId"
GRANTED_SIGNAL = "accessGranted"


class AccessReason(str, Enum):
    """Why an access request ended the way it did."""

    GRANTED = "granted"
    SIGNAL_MISMATCH = "signal_mismatch"
    INVALID_PROOF = "invalid_proof"
    PREDICATE_FALSE = "predicate_false"


@dataclass(frozen=True)
class Resource:
    """A registered resource. Replaced as a whole on re-registration."""

    resource_id: int
    required_permission: int
    payload: Any = field(default=None, repr=False)
    registered_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ResourceRegistered:
    """Event emitted after a resource was registered or replaced."""

    resource: Resource
    previous: Optional[Resource] = None

    @property
    def replaced(self) -> bool:
        return self.previous is not None


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an access request. The payload is only set when granted."""

    granted: bool
    reason: AccessReason
    resource_id: int
    payload: Any = field(default=None, repr=False)

    def as_tuple(self):
        return self.granted, self.payload


Listener = Callable[[ResourceRegistered], None]


def _check_scalar(name: str, value: Any, modulus: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer, got {type(value).__name__}")
    if not 0 <= value < modulus:
        raise ValueError(f"{name} must be in [0, field order)")
    return value


class AccessGateway:
    """Registry of resources guarded by threshold proofs."""

    def __init__(self, verification_key: Optional[VerificationKey] = None,
                 strict_binding: Optional[bool] = None):
        """Initialize gateway.

        Args:
            verification_key: Trusted key; a request may only bring its own while none is set
            strict_binding: Raise PublicSignalMismatchError instead of denying
                (defaults to settings.strict_binding)
        """
        self._lock = threading.RLock()
        self._resources: Dict[int, Resource] = {}
        self._listeners: List[Listener] = []
        self._verification_key = verification_key
        self.strict_binding = settings.strict_binding if strict_binding is None else strict_binding
        self._decisions: Counter = Counter()

    # ----------------------------------------------------------------- writes

    def register(self, resource_id: int, required_permission: int, payload: Any = None) -> Resource:
        """Create or replace a resource and notify subscribers."""
        modulus = self._field_modulus()
        resource = Resource(
            resource_id=_check_scalar("resource_id", resource_id, modulus),
            required_permission=_check_scalar("required_permission", required_permission, modulus),
            payload=payload,
        )
        bit_width = self._bit_width()
        if bit_width is not None and required_permission >= 1 << bit_width:
            raise ValueError(f"required_permission does not fit the circuit's {bit_width}-bit range")
        with self._lock:
            previous = self._resources.get(resource_id)
            snapshot = dict(self._resources)
            snapshot[resource_id] = resource
            self._resources = snapshot
            listeners = list(self._listeners)

        action = "Replaced" if previous else "Registered"
        logger.info(f"{action} resource {resource_id} (requiredPermission={required_permission})")
        event = ResourceRegistered(resource=resource, previous=previous)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Registration listener {listener!r} failed: {type(e).__name__}: {e}")
        return resource

    def rotate_verification_key(self, new_key: VerificationKey) -> Optional[VerificationKey]:
        """Replace the trusted verification key. Authorizing the caller is the host's job."""
        prepare_verification_key(new_key)
        with self._lock:
            previous = self._verification_key
            self._verification_key = new_key
        logger.info(f"Rotated verification key to {new_key.fingerprint[:16]}")
        return previous

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for ResourceRegistered events; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------ reads

    @property
    def verification_key(self) -> Optional[VerificationKey]:
        return self._verification_key

    def get(self, resource_id: int) -> Optional[Resource]:
        return self._resources.get(resource_id)

    def resources(self) -> Dict[int, Resource]:
        """Snapshot of all registered resources."""
        return dict(self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, resource_id: Any) -> bool:
        return resource_id in self._resources

    def request_access(self, resource_id: int, proof: ProofLike, public_signals: SignalsLike,
                       verification_key: Optional[VerificationKey] = None) -> AccessDecision:
        """Decide an access request.

        Returns:
            AccessDecision: ``granted`` with the payload only if the proof is valid,
                bound to this resource's requirement, and proves ``accessGranted == 1``

        Raises:
            UnregisteredResourceError: Unknown resource id
            MalformedProofError: Malformed proof or public-signal arity
            ZKDAPError: No key configured, or the request key is not the trusted one
            PublicSignalMismatchError: Binding mismatch while ``strict_binding`` is on
        """
        resource = self._resources.get(resource_id)
        if resource is None:
            raise UnregisteredResourceError(f"Resource {resource_id} is not registered")
        trusted = self._verification_key
        if verification_key is not None and trusted is not None \
                and verification_key.fingerprint != trusted.fingerprint:
            raise ZKDAPError(f"Request key {verification_key.fingerprint[:16]} is not the trusted key "
                             f"{trusted.fingerprint[:16]}")
        vk = verification_key or trusted
        if vk is None:
            raise ZKDAPError("No verification key configured")

        key = prepare_verification_key(vk)
        for name in (REQUIRED_SIGNAL, RESOURCE_SIGNAL, GRANTED_SIGNAL):
            if name not in key.public_names:
                raise MalformedCircuitError(f"Verification key has no public signal {name!r}")

        points = parse_proof(proof, key)
        signals = dict(zip(key.public_names, parse_public_signals(public_signals, key)))

        if signals[REQUIRED_SIGNAL] != resource.required_permission or signals[RESOURCE_SIGNAL] != resource_id:
            message = (f"Proof is bound to resource {signals[RESOURCE_SIGNAL]} with threshold "
                       f"{signals[REQUIRED_SIGNAL]}, not resource {resource_id}")
            logger.warning(f"Access to {resource_id} denied: {message}")
            if self.strict_binding:
                with self._lock:
                    self._decisions[AccessReason.SIGNAL_MISMATCH] += 1
                raise PublicSignalMismatchError(message)
            return self._decide(resource, AccessReason.SIGNAL_MISMATCH)

        if not pairing_check(points, list(signals.values()), key):
            logger.warning(f"Access to {resource_id} denied: invalid proof")
            return self._decide(resource, AccessReason.INVALID_PROOF)

        if signals[GRANTED_SIGNAL] != 1:
            logger.info(f"Access to {resource_id} denied: permission below threshold")
            return self._decide(resource, AccessReason.PREDICATE_FALSE)

        logger.info(f"Access to {resource_id} granted")
        return self._decide(resource, AccessReason.GRANTED)

    def _decide(self, resource: Resource, reason: AccessReason) -> AccessDecision:
        with self._lock:
            self._decisions[reason] += 1
        granted = reason is AccessReason.GRANTED
        return AccessDecision(
            granted=granted,
            reason=reason,
            resource_id=resource.resource_id,
            payload=resource.payload if granted else None,
        )

    def _bit_width(self) -> Optional[int]:
        vk = self._verification_key
        return vk.bit_width if vk is not None else None

    def _field_modulus(self) -> int:
        vk = self._verification_key
        if vk is not None:
            return prepare_verification_key(vk).backend.curve_order
        return get_backend(settings.curve).curve_order

    def get_stats(self) -> Dict[str, Any]:
        return {
            "resources": len(self._resources),
            "listeners": len(self._listeners),
            "decisions": {reason.value: self._decisions[reason] for reason in AccessReason},
        }


__all__ = [
    "AccessGateway", "AccessDecision", "AccessReason", "Resource", "ResourceRegistered",
]
