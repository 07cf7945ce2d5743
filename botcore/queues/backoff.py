import random


class BackoffPolicy:
    """
    Exponential backoff bounded by a maximum delay.

    delay(n) = min(initial_delay * factor ** (n - 1), max_delay) for the n-th
    failed attempt, optionally spread by +/- jitter (a fraction of the delay).
    Jitter defaults to zero so retry timing is deterministic.
    """

    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        factor: float = 2.0,
        jitter: float = 0.0,
    ):
        if initial_delay < 0 or max_delay < 0:
            raise ValueError("backoff delays must be non-negative")
        if factor < 1:
            raise ValueError("backoff factor must be >= 1")
        if not 0 <= jitter <= 1:
            raise ValueError("backoff jitter must be between 0 and 1")

        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.factor = factor
        self.jitter = jitter

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        if attempt <= 0:
            return 0.0

        # cap the exponent before it overflows a float
        exponent = min(attempt - 1, 64)
        base = min(self.initial_delay * (self.factor**exponent), self.max_delay)
        if self.jitter:
            spread = base * self.jitter
            base = max(0.0, base + random.uniform(-spread, spread))
        return base

    def __repr__(self) -> str:
        return (
            f"BackoffPolicy(initial_delay={self.initial_delay}, max_delay={self.max_delay}, "
            f"factor={self.factor}, jitter={self.jitter})"
        )
