"""Vanity principal search.

A search keeps drawing identities until one principal starts with the target
prefix. Progress is reported to an optional observer every
``PROGRESS_INTERVAL`` attempts so callers decide how (or whether) to print it.
"""

import logging
import multiprocessing
import queue
import time
from dataclasses import dataclass
from enum import Enum

from icp_keys import (
    MAX_PRINCIPAL_TEXT,
    PRINCIPAL_ALPHABET,
    PRINCIPAL_GROUP,
    DerivationError,
    IcpKeyError,
    IdentityFactory,
)

log = logging.getLogger(__name__)

DEFAULT_PREFIX = "aaaaa"
PROGRESS_INTERVAL = 100_000

# parallel mode
FLUSH_EVERY = 1000
POLL_SECONDS = 1.0
STOP_GRACE_SECONDS = 5.0


class SearchState(Enum):
    SEARCHING = "searching"
    MATCHED = "matched"
    FAILED = "failed"


class SearchError(Exception):
    """A search ended without a match."""


class SearchExhausted(SearchError):
    """The iteration or time budget ran out."""


class SearchCancelled(SearchError):
    """The stop signal was raised while searching."""


@dataclass(frozen=True)
class SearchResult:
    principal: str
    mnemonic: str
    secret_key: bytes
    iterations: int
    elapsed: float

    @property
    def rate(self) -> float:
        return self.iterations / self.elapsed if self.elapsed > 0 else 0


class ConsoleProgress:
    """Prints one status line per progress event."""

    def on_progress(self, iterations, elapsed, sample):
        rate = round(iterations / elapsed) if elapsed > 0 else 0
        if sample:
            print(f"[{iterations:,}] sample: {sample} | rate: {rate} attempts/sec", flush=True)
        else:
            print(f"[{iterations:,}] rate: {rate} attempts/sec", flush=True)


def expected_attempts(prefix: str) -> int:
    """Average number of attempts needed, dashes are fixed and don't count."""
    return len(PRINCIPAL_ALPHABET) ** len(prefix.replace("-", ""))


def validate_prefix(prefix: str):
    """Return why ``prefix`` can never match a principal, or None."""
    if len(prefix) > MAX_PRINCIPAL_TEXT:
        return f"prefix is longer than a principal ({MAX_PRINCIPAL_TEXT} characters)"
    for i, ch in enumerate(prefix):
        if (i + 1) % (PRINCIPAL_GROUP + 1) == 0:
            if ch != "-":
                return f"character {i + 1} must be '-' (principals are grouped in fives)"
        elif ch not in PRINCIPAL_ALPHABET:
            return f"'{ch}' is not a valid principal character"
    return None


class VanitySearch:
    """Single target search: SEARCHING until MATCHED or FAILED.

    ``max_iterations`` and ``max_seconds`` bound the search and ``stop_event``
    (anything with ``is_set()``) cancels it; all three end in FAILED.
    """

    def __init__(
        self,
        prefix: str,
        factory=None,
        observer=None,
        clock=time.monotonic,
        max_iterations=None,
        max_seconds=None,
        stop_event=None,
    ):
        self.prefix = prefix
        self.factory = factory or IdentityFactory()
        self.observer = observer
        self.clock = clock
        self.max_iterations = max_iterations
        self.max_seconds = max_seconds
        self.stop_event = stop_event

        self.state = SearchState.SEARCHING
        self.iterations = 0
        self.result = None

    def _check_limits(self, start: float):
        if self.stop_event is not None and self.stop_event.is_set():
            raise SearchCancelled(f"search cancelled after {self.iterations:,} attempts")
        if self.max_iterations is not None and self.iterations >= self.max_iterations:
            raise SearchExhausted(f"no match in {self.iterations:,} attempts")
        if self.max_seconds is not None and self.clock() - start >= self.max_seconds:
            raise SearchExhausted(f"no match within {self.max_seconds}s")

    def _step(self, start: float):
        self._check_limits(start)
        self.iterations += 1
        try:
            identity = self.factory.create()
        except DerivationError as exc:
            log.debug("attempt %d discarded: %s", self.iterations, exc)
            return

        if identity.principal.startswith(self.prefix):
            self.result = SearchResult(
                principal=identity.principal,
                mnemonic=identity.mnemonic,
                secret_key=identity.secret_key,
                iterations=self.iterations,
                elapsed=self.clock() - start,
            )
            self.state = SearchState.MATCHED
        elif self.observer is not None and self.iterations % PROGRESS_INTERVAL == 0:
            self.observer.on_progress(self.iterations, self.clock() - start, identity.principal)

    def run(self) -> SearchResult:
        self.state = SearchState.SEARCHING
        self.iterations = 0
        self.result = None
        start = self.clock()
        try:
            while self.state is SearchState.SEARCHING:
                self._step(start)
        except (IcpKeyError, SearchError):
            self.state = SearchState.FAILED
            raise
        return self.result


def search(prefix: str = DEFAULT_PREFIX, **kwargs) -> SearchResult:
    """Search until a principal starting with ``prefix`` turns up."""
    return VanitySearch(prefix, **kwargs).run()


def search_multiple(prefix: str = DEFAULT_PREFIX, count: int = 1, **kwargs):
    """Run ``count`` independent searches one after another."""
    return [search(prefix, **kwargs) for _ in range(count)]


def _flush(pending, sample, counter, lock, progress_queue):
    with lock:
        before = counter.value
        counter.value += pending
        total = counter.value
    if before // PROGRESS_INTERVAL != total // PROGRESS_INTERVAL:
        progress_queue.put((total, sample))


def _vanity_worker(prefix, factory, counter, lock, found_event, result_queue, progress_queue):
    """Worker process for parallel vanity search."""
    pending = 0
    try:
        while not found_event.is_set():
            pending += 1
            try:
                identity = factory.create()
            except DerivationError as exc:
                log.debug("attempt discarded: %s", exc)
                continue

            if identity.principal.startswith(prefix):
                with lock:
                    counter.value += pending
                    pending = 0
                    # first match wins, later ones are dropped
                    if not found_event.is_set():
                        result_queue.put(("match", identity))
                        found_event.set()
                return

            if pending >= FLUSH_EVERY:
                _flush(pending, identity.principal, counter, lock, progress_queue)
                pending = 0
    except IcpKeyError as exc:
        with lock:
            if not found_event.is_set():
                result_queue.put(("error", exc))
                found_event.set()
    except KeyboardInterrupt:
        # the parent reports the interrupt
        return
    finally:
        if pending:
            with lock:
                counter.value += pending


def _drain_progress(progress_queue, observer, elapsed):
    while True:
        try:
            total, sample = progress_queue.get_nowait()
        except queue.Empty:
            return
        if observer is not None:
            observer.on_progress(total, elapsed, sample)


def _stop_workers(workers, progress_queue):
    deadline = time.monotonic() + STOP_GRACE_SECONDS
    for p in workers:
        while p.is_alive() and time.monotonic() < deadline:
            _drain_progress(progress_queue, None, 0)
            p.join(timeout=0.05)
        if p.is_alive():
            log.warning("worker %s did not stop, terminating", p.pid)
            p.terminate()
            p.join()


def search_parallel(
    prefix: str = DEFAULT_PREFIX,
    workers=None,
    factory=None,
    observer=None,
    clock=time.monotonic,
    max_iterations=None,
    max_seconds=None,
    poll: float = POLL_SECONDS,
) -> SearchResult:
    """Search with one process per worker, first match wins.

    The reported iteration count is the sum of every worker's attempts once
    all of them have stopped.
    """
    n_workers = workers or multiprocessing.cpu_count()
    factory = factory or IdentityFactory()

    counter = multiprocessing.Value("Q", 0, lock=False)
    lock = multiprocessing.Lock()
    found_event = multiprocessing.Event()
    result_queue = multiprocessing.Queue()
    progress_queue = multiprocessing.Queue()

    start = clock()
    procs = []
    for _ in range(n_workers):
        p = multiprocessing.Process(
            target=_vanity_worker,
            args=(prefix, factory, counter, lock, found_event, result_queue, progress_queue),
            daemon=True,
        )
        p.start()
        procs.append(p)
    log.debug("started %d search workers for prefix %r", n_workers, prefix)

    try:
        while True:
            _drain_progress(progress_queue, observer, clock() - start)
            try:
                kind, payload = result_queue.get(timeout=poll)
                break
            except queue.Empty:
                pass

            with lock:
                total = counter.value
            if max_iterations is not None and total >= max_iterations:
                raise SearchExhausted(f"no match in {total:,} attempts")
            if max_seconds is not None and clock() - start >= max_seconds:
                raise SearchExhausted(f"no match within {max_seconds}s")
            if not any(p.is_alive() for p in procs):
                try:
                    kind, payload = result_queue.get(timeout=poll)
                    break
                except queue.Empty:
                    raise SearchError("all workers exited without a result") from None
    finally:
        found_event.set()
        _stop_workers(procs, progress_queue)

    elapsed = clock() - start
    if kind == "error":
        raise payload

    return SearchResult(
        principal=payload.principal,
        mnemonic=payload.mnemonic,
        secret_key=payload.secret_key,
        iterations=counter.value,
        elapsed=elapsed,
    )
