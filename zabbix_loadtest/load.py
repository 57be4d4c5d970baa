"""
Load generation: one worker thread per host pushing values through a sink.

A worker loops until its wall-clock duration or iteration count is used up,
or until ``stop()`` is called when neither is set, waiting ``delay`` seconds
between iterations. Workers do not share state; each fills its own
``HostStats``.
"""

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from .exceptions import ConfigurationError, LoadGenerationError
from .senders import SendResult, ValueSink

logger = logging.getLogger(__name__)

DEFAULT_DELAY = 0.01
DEFAULT_RETRIES = 3

FAILURE_POLICIES = ('drop', 'log', 'retry', 'raise')
VALUE_MODES = ('counter', 'random')


@dataclass
class HostStats:
    host: str
    iterations: int = 0
    attempts: int = 0
    sent: int = 0
    failed: int = 0
    elapsed: float = 0.0
    error: Optional[str] = None

    @property
    def rate(self) -> float:
        return self.sent / self.elapsed if self.elapsed > 0 else 0.0


class LoadGenerator:
    def __init__(self, sink: ValueSink, duration: Optional[float] = None,
                 iterations: Optional[int] = None, delay: float = DEFAULT_DELAY,
                 on_failure: str = 'log', retries: int = DEFAULT_RETRIES,
                 values: str = 'counter', all_keys: bool = False):
        if on_failure not in FAILURE_POLICIES:
            raise ConfigurationError(f"Unknown failure policy: {on_failure}")
        if values not in VALUE_MODES:
            raise ConfigurationError(f"Unknown value mode: {values}")
        if delay < 0 or (duration is not None and duration < 0) or \
                (iterations is not None and iterations < 0) or retries < 0:
            raise ConfigurationError("Duration, iterations, delay and retries must not be negative")

        self.sink = sink
        self.duration = duration
        self.iterations = iterations
        self.delay = delay
        self.on_failure = on_failure
        self.retries = retries
        self.values = values
        self.all_keys = all_keys
        self.results: Dict[str, HostStats] = {}
        self._stop = threading.Event()

    @property
    def bounded(self) -> bool:
        return self.duration is not None or self.iterations is not None

    def stop(self):
        self._stop.set()

    def _value(self, counter: int):
        if self.values == 'random':
            return round(random.uniform(0, 100), 4)
        return counter

    def _send(self, host: str, key: str, value, stats: HostStats) -> SendResult:
        attempts = 1 + (self.retries if self.on_failure == 'retry' else 0)
        for attempt in range(1, attempts + 1):
            stats.attempts += 1
            result = self.sink.send(host, key, value)
            if result.ok:
                stats.sent += 1
                return result
            if attempt < attempts:
                logger.debug(f"Retrying '{key}' on '{host}' ({attempt}/{self.retries}): {result.error}")

        stats.failed += 1
        if self.on_failure != 'drop':
            logger.warning(f"Failed to send value to '{host}' ({key}): {result.error}")
        return result

    def _worker(self, host: str, keys: List[str], stats: HostStats):
        if not keys:
            logger.warning(f"Host '{host}' has no items, nothing to send")
            return

        targets = keys if self.all_keys else keys[:1]
        started = time.monotonic()
        deadline = started + self.duration if self.duration is not None else None

        if self.duration is not None:
            logger.info(f"Sending values to host '{host}' for {self.duration} seconds...")
        elif self.iterations is not None:
            logger.info(f"Sending {self.iterations} rounds of values to host '{host}'...")
        else:
            logger.info(f"Sending values to host '{host}' until interrupted...")

        try:
            while not self._stop.is_set():
                if deadline is not None and time.monotonic() >= deadline:
                    break
                if self.iterations is not None and stats.iterations >= self.iterations:
                    break

                value = self._value(stats.iterations + 1)
                for key in targets:
                    result = self._send(host, key, value, stats)
                    if not result.ok and self.on_failure == 'raise':
                        stats.error = f"{key}: {result.error}"
                        return
                stats.iterations += 1

                if self._stop.wait(self.delay):
                    break
        except Exception as e:
            logger.exception(f"Worker for host '{host}' crashed")
            stats.error = str(e)
        finally:
            stats.elapsed = time.monotonic() - started
            logger.info(f"Finished sending to host '{host}'. Total values sent: {stats.sent} "
                        f"(failed: {stats.failed})")

    def run(self, targets: Dict[str, List[str]]) -> Dict[str, HostStats]:
        """Run one worker per host and wait for all of them.

        ``targets`` maps host names to their item keys. On KeyboardInterrupt
        the workers are stopped and joined before the interrupt is re-raised;
        ``self.results`` still holds their statistics.
        """
        self._stop.clear()
        self.results = {host: HostStats(host) for host in targets}
        threads = []

        for host, keys in targets.items():
            t = threading.Thread(
                target=self._worker,
                args=(host, list(keys), self.results[host]),
                name=f"load-{host}",
                daemon=True,
            )
            threads.append(t)
            t.start()

        try:
            for t in threads:
                while t.is_alive():
                    t.join(0.5)
        except KeyboardInterrupt:
            logger.warning("Interrupted, stopping load workers")
            self.stop()
            for t in threads:
                t.join()
            raise

        failed = {host: s.error for host, s in self.results.items() if s.error}
        if failed:
            details = ", ".join(f"{host}: {error}" for host, error in failed.items())
            raise LoadGenerationError(f"Load generation failed for {len(failed)} host(s): {details}",
                                      stats=self.results)
        return self.results
