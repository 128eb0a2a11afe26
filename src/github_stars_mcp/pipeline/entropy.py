"""Token-level entropy monitoring of a generation stream.

A confident generation has a smoothly varying per-token entropy. Hallucination onset shows up as a spike in
uncertainty, which raises the local variance of the entropy trace while its absolute level stays topic dependent.
The monitor keeps a rolling window of per-token entropies and flags the generation when the population standard
deviation of the window exceeds a threshold.
"""

import math
import os
import statistics
from collections import deque
from collections.abc import Sequence

from fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)

DEFAULT_WINDOW_SIZE = 30
DEFAULT_ENTROPY_THRESHOLD = 1.5


def get_window_size() -> int:
    return int(os.getenv("ENTROPY_WINDOW_SIZE", str(DEFAULT_WINDOW_SIZE)))


def get_entropy_threshold() -> float:
    return float(os.getenv("ENTROPY_THRESHOLD", str(DEFAULT_ENTROPY_THRESHOLD)))


def compute_entropy(logprobs: Sequence[float]) -> float:
    """Shannon entropy (in nats) of the renormalized distribution given by top-k log probabilities.

    Entries equal to negative infinity are ignored. Returns 0 when no valid entries remain.
    """

    valid_logprobs = [logprob for logprob in logprobs if logprob > -math.inf]
    if not valid_logprobs:
        return 0.0

    probabilities = [math.exp(logprob) for logprob in valid_logprobs]
    total = sum(probabilities)

    entropy = 0.0
    for probability in probabilities:
        normalized = probability / total
        if normalized > 0:
            entropy -= normalized * math.log(normalized)

    return entropy


class TokenEntropyMonitor:
    """Flags a generation whose rolling entropy standard deviation exceeds `entropy_threshold`.

    Create one monitor per generation call, or `reset` it between calls.
    """

    def __init__(self, window_size: int | None = None, entropy_threshold: float | None = None):
        self.window_size: int = window_size if window_size is not None else get_window_size()
        self.entropy_threshold: float = entropy_threshold if entropy_threshold is not None else get_entropy_threshold()

        if self.window_size < 1:
            msg = f"window_size must be at least 1, got {self.window_size}"
            raise ValueError(msg)

        self._window: deque[float] = deque(maxlen=self.window_size)
        self.is_anomalous: bool = False

    @property
    def entropies(self) -> list[float]:
        return list(self._window)

    @property
    def stddev(self) -> float:
        """The population standard deviation of the current window, 0 when empty."""

        if not self._window:
            return 0.0

        return statistics.pstdev(self._window)

    def compute_entropy(self, logprobs: Sequence[float]) -> float:
        return compute_entropy(logprobs)

    def observe_entropy(self, entropy: float) -> bool:
        """Push a token entropy into the window and return whether the window is anomalous."""

        self._window.append(entropy)

        stddev = self.stddev

        self.is_anomalous = stddev > self.entropy_threshold

        logger.debug(f"Token entropy {entropy:.4f}, rolling entropy stddev {stddev:.4f}")

        return self.is_anomalous

    def detect_hallucination(self, logprobs: Sequence[float]) -> bool:
        """Update the window with the entropy of a token's top-k log probabilities.

        Returns True if a potential hallucination is detected. A token without log probabilities leaves the
        window untouched and returns False.
        """

        if not logprobs:
            return False

        return self.observe_entropy(self.compute_entropy(logprobs))

    def reset(self) -> None:
        self._window.clear()
        self.is_anomalous = False
