# progress.py
# Stuck detection: fingerprint each snapshot and notice when the surface
# stops changing between cycles.
#
# stdlib only. A fingerprint is cheap, not collision-proof.

import hashlib

SAMPLE_SIZE = 100
DEFAULT_THRESHOLD = 3


def fingerprint(payload: bytes | str) -> str:
    """
    Digest of payload length plus its first and last SAMPLE_SIZE units.

    Two payloads that differ only in the middle share a fingerprint. That is
    accepted: the goal is spotting an unchanged surface, not integrity.
    """
    data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
    digest = hashlib.sha256()
    digest.update(str(len(data)).encode("ascii"))
    digest.update(b":")
    digest.update(data[:SAMPLE_SIZE])
    digest.update(b":")
    digest.update(data[-SAMPLE_SIZE:])
    return digest.hexdigest()


class ProgressDetector:
    """
    Counts consecutive identical fingerprints.

    observe() returns True once `threshold` consecutive cycles produced the
    same fingerprint. Any change resets the run length to one.
    """

    def __init__(self, threshold: int = DEFAULT_THRESHOLD) -> None:
        if threshold < 2:
            raise ValueError("threshold must be at least 2")
        self._threshold = threshold
        self._last: str | None = None
        self._run_length = 0

    def observe(self, value: str) -> bool:
        if value == self._last:
            self._run_length += 1
        else:
            self._last = value
            self._run_length = 1
        return self._run_length >= self._threshold

    def reset(self) -> None:
        self._last = None
        self._run_length = 0

    @property
    def repeats(self) -> int:
        """How many cycles in a row the current fingerprint has been seen."""
        return self._run_length

    @property
    def threshold(self) -> int:
        return self._threshold
