"""Memory hygiene for secret material.

Ceremony randomness and witnesses must not outlive the operation that uses
them. Python cannot guarantee erasure of immutable objects, so secrets are
copied into a private bytearray that is zeroed on exit, and caller-owned
mutable buffers are zeroed as well.
"""

import logging
from typing import Union
from contextlib import contextmanager

logger = logging.getLogger(__name__)

SecretInput = Union[bytes, bytearray, memoryview, str]


def wipe(buffer: Union[bytearray, memoryview]) -> None:
    """Overwrite a mutable buffer with zeros in place."""
    if isinstance(buffer, memoryview):
        if buffer.readonly:
            return
        buffer = buffer.cast("B")
    for i in range(len(buffer)):
        buffer[i] = 0


@contextmanager
def secret_buffer(data: SecretInput):
    """Yield a private mutable copy of ``data`` and zero it on exit.

    If ``data`` itself is a writable buffer it is zeroed too, so the caller's
    copy of the randomness is discarded together with ours.

    Raises:
        ValueError: If ``data`` is empty
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    if len(data) == 0:
        raise ValueError("Secret input must not be empty")

    private = bytearray(data)
    try:
        yield private
    finally:
        wipe(private)
        if isinstance(data, (bytearray, memoryview)):
            wipe(data)


@contextmanager
def memory_guard(operation: str):
    """Context manager for logging failures of an operation.

    Args:
        operation: Name of operation for logging

    Yields:
        None
    """
    try:
        yield
    except MemoryError:
        logger.error(f"Memory error during {operation}")
        raise
    except Exception as e:
        logger.error(f"Error during {operation}: {type(e).__name__}: {e}")
        raise


__all__ = ["wipe", "secret_buffer", "memory_guard", "SecretInput"]
