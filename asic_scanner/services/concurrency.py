"""Adaptive bound on simultaneous identification attempts."""
import logging
import queue
import random
import threading
from collections import deque
from typing import Deque, Optional

logger = logging.getLogger(__name__)


class AdaptiveConcurrencyController:
    """
    Additive-increase / multiplicative-decrease permit pool.

    Workers call acquire() before an identification attempt and release()
    afterwards with the observed latency and outcome. release() only frees
    the slot and queues the outcome; the limit itself is changed by the
    controller's feedback thread alone.

    A fast success may raise the limit by one (with probability
    ``increase_probability``) up to ``ceiling``. An error or a slow attempt
    multiplies the limit by ``decrease_factor``, never below ``floor``.
    Lowering the limit does not interrupt attempts already holding a
    permit; new acquirers wait until the in-use count drops under it.
    """

    def __init__(self,
                 initial: int = 8,
                 floor: int = 1,
                 ceiling: int = 64,
                 latency_threshold: float = 3.0,
                 decrease_factor: float = 0.5,
                 increase_probability: float = 0.5,
                 sample_size: int = 32,
                 rng: Optional[random.Random] = None):
        self.initial = initial
        self.floor = max(1, floor)
        self.ceiling = max(self.floor, ceiling)
        self.latency_threshold = latency_threshold
        self.decrease_factor = decrease_factor
        self.increase_probability = increase_probability
        self._rng = rng or random.Random()

        self._cond = threading.Condition()
        self._limit = self._clamp(initial)
        self._in_use = 0
        self.latencies: Deque[float] = deque(maxlen=sample_size)
        self.error_count = 0

        self._feedback: "queue.Queue[Optional[tuple]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config, rng: Optional[random.Random] = None) -> "AdaptiveConcurrencyController":
        return cls(initial=config.initial,
                   floor=config.floor,
                   ceiling=config.ceiling,
                   latency_threshold=config.latency_threshold,
                   decrease_factor=config.decrease_factor,
                   increase_probability=config.increase_probability,
                   sample_size=config.sample_size,
                   rng=rng)

    def _clamp(self, value: int) -> int:
        return max(self.floor, min(self.ceiling, value))

    @property
    def limit(self) -> int:
        with self._cond:
            return self._limit

    @property
    def in_use(self) -> int:
        with self._cond:
            return self._in_use

    def reset(self):
        """Forget everything learned; called at the start of each sweep."""
        with self._cond:
            self._limit = self._clamp(self.initial)
            self.latencies.clear()
            self.error_count = 0
            self._cond.notify_all()

    # --- permits ---

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """Take a permit. Returns False if none became free within timeout."""
        with self._cond:
            if not self._cond.wait_for(lambda: self._in_use < self._limit, timeout):
                return False
            self._in_use += 1
            return True

    def release(self, latency: Optional[float] = None, ok: bool = True):
        """
        Return a permit and report how the attempt went.

        With latency None the permit is returned unused and no feedback is
        recorded.
        """
        with self._cond:
            if self._in_use <= 0:
                raise RuntimeError("release() without a matching acquire()")
            self._in_use -= 1
            self._cond.notify()
        if latency is None:
            return
        if self._thread is not None:
            self._feedback.put((latency, ok))
        else:
            self.apply_feedback(latency, ok)

    # --- feedback ---

    def start(self):
        """Start the feedback thread."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._feedback_loop,
                                        name="concurrency-feedback",
                                        daemon=True)
        self._thread.start()

    def stop(self):
        """Stop the feedback thread after it drains queued outcomes."""
        thread = self._thread
        if thread is None:
            return
        self._feedback.put(None)
        thread.join(timeout=5)
        self._thread = None

    def _feedback_loop(self):
        while True:
            item = self._feedback.get()
            if item is None:
                break
            self.apply_feedback(*item)

    def apply_feedback(self, latency: float, ok: bool):
        """Adjust the limit for one finished attempt."""
        with self._cond:
            self.latencies.append(latency)
            old = self._limit
            if not ok or latency > self.latency_threshold:
                if not ok:
                    self.error_count += 1
                self._limit = self._clamp(int(self._limit * self.decrease_factor))
            elif self._limit < self.ceiling and self._rng.random() < self.increase_probability:
                self._limit += 1
            if self._limit != old:
                logger.debug("Concurrency limit %d -> %d (latency %.2fs, ok=%s)",
                             old, self._limit, latency, ok)
                self._cond.notify_all()
