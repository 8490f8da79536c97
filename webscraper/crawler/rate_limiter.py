"""
Per-domain admission control.

Each domain is paced by a RateLimitRule: a minimum delay between
consecutive requests and a request quota per period. The quota uses a
fixed window that resets once `period` has passed since the domain's last
recorded access, so up to twice the quota can land around a window
boundary.

A caller that has to wait holds a Reservation for its admission slot. If
it gives up before being admitted, the reservation is undone so later
callers are not paced against an access that never happened.
"""

import asyncio
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Pattern, Tuple

from ..errors import ConfigurationError, ShutdownAborted
from ..utils.timing import sleep_unless_cancelled
from .frontier import extract_domain


@dataclass(frozen=True)
class RateLimitRule:
    """Pacing rule for one domain (durations in seconds)."""
    requests_per_period: int
    period: float
    min_delay: float = 0.0

    def __post_init__(self):
        if self.requests_per_period < 1:
            raise ConfigurationError("requests_per_period must be at least 1")
        if self.period < 0:
            raise ConfigurationError("period must be non-negative")
        if self.min_delay < 0:
            raise ConfigurationError("min_delay must be non-negative")


@dataclass(eq=False)
class Reservation:
    """An admission slot handed out to a waiting caller, with the state it replaced."""
    admit_at: float
    previous_access: Optional[float]
    previous_count: int
    cancelled: bool = False


@dataclass
class DomainState:
    """Access bookkeeping for one domain."""
    last_access: Optional[float] = None
    window_count: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)
    # Reservations not yet admitted, oldest first
    pending: List[Reservation] = field(default_factory=list, repr=False, compare=False)


# 10 requests per 10 seconds with 500ms between requests
DEFAULT_RULE = RateLimitRule(requests_per_period=10, period=10.0, min_delay=0.5)


class DomainRateLimiter:
    """
    Gates requests per domain.

    Every domain has its own DomainState and lock. The wait is computed and
    the access reserved inside that lock, then the lock is released before
    the caller sleeps, so a slow domain never holds up another one. Callers
    for the same domain are admitted in the order they called acquire().
    """

    def __init__(self, default_rule: Optional[RateLimitRule] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.logger = logging.getLogger(__name__)
        self._clock = clock

        self._default_rule = default_rule or DEFAULT_RULE
        self._domain_rules: Dict[str, RateLimitRule] = {}
        self._pattern_rules: List[Tuple[Pattern, RateLimitRule]] = []

        # Guards the two registries only, never a wait
        self._registry_lock = threading.Lock()
        self._states: Dict[str, DomainState] = {}

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.monotonic) -> 'DomainRateLimiter':
        """Build a limiter from RateLimitSettings."""
        limiter = cls(settings.default, clock=clock)
        for domain, rule in settings.domains.items():
            limiter.add_domain_rule(domain, rule)
        for pattern, rule in settings.patterns:
            limiter.add_pattern_rule(pattern, rule)
        return limiter

    # Rule management

    def set_default_rule(self, rule: RateLimitRule):
        """Replace the rule used for domains without a specific one."""
        with self._registry_lock:
            self._default_rule = rule
        self.logger.info(
            f"Default rate limit set to {rule.requests_per_period} requests per "
            f"{rule.period}s with {rule.min_delay}s minimum delay"
        )

    def add_domain_rule(self, domain: str, rule: RateLimitRule):
        """Register a rule for an exact domain."""
        with self._registry_lock:
            self._domain_rules[domain.lower()] = rule
        self.logger.info(
            f"Rate limit for domain {domain} set to {rule.requests_per_period} requests per "
            f"{rule.period}s with {rule.min_delay}s minimum delay"
        )

    def add_pattern_rule(self, pattern: str, rule: RateLimitRule):
        """Register a rule for every domain fully matching a regex."""
        compiled = re.compile(pattern)
        with self._registry_lock:
            self._pattern_rules.append((compiled, rule))
        self.logger.info(
            f"Rate limit for domain pattern {pattern} set to {rule.requests_per_period} requests per "
            f"{rule.period}s with {rule.min_delay}s minimum delay"
        )

    def rule_for(self, domain: str) -> RateLimitRule:
        """Resolve the rule for a domain: exact match, then first pattern, then default."""
        domain = domain.lower()
        with self._registry_lock:
            rule = self._domain_rules.get(domain)
            if rule is not None:
                return rule

            for pattern, pattern_rule in self._pattern_rules:
                if pattern.fullmatch(domain):
                    return pattern_rule

            return self._default_rule

    # Admission

    async def acquire(self, domain: str, cancel_event: Optional[asyncio.Event] = None) -> float:
        """
        Wait until a request to `domain` is allowed and record it.

        Returns:
            Seconds waited.

        Raises:
            ShutdownAborted: if `cancel_event` is set while waiting.
        """
        state, wait_time, reservation = self._reserve(domain.lower())
        if reservation is None:
            return wait_time

        self.logger.debug(f"Waiting {wait_time:.3f}s before next request to {domain}")
        try:
            aborted = await sleep_unless_cancelled(wait_time, cancel_event)
        except asyncio.CancelledError:
            self._release(state, reservation)
            raise

        if aborted:
            self._release(state, reservation)
            raise ShutdownAborted(domain, f"Shutdown while waiting for rate limit on {domain}")

        self._commit(state, reservation)
        return wait_time

    async def acquire_url(self, url: str, cancel_event: Optional[asyncio.Event] = None) -> float:
        """Acquire for the domain of a URL. URLs without a host are not gated."""
        domain = extract_domain(url)
        if domain is None:
            self.logger.warning(f"Could not extract domain from URL: {url}")
            return 0.0
        return await self.acquire(domain, cancel_event)

    def _reserve(self, domain: str) -> Tuple[DomainState, float, Optional[Reservation]]:
        """
        Compute the wait for a new request and record it at its admission time.

        Returns the domain state, the wait and, when the wait is positive,
        the Reservation to commit or release once the wait is over.
        """
        rule = self.rule_for(domain)
        state = self._state_for(domain)

        with state.lock:
            now = self._clock()
            wait_time = self._compute_wait(rule, state, now)

            reservation = None
            if wait_time > 0:
                reservation = Reservation(now + wait_time, state.last_access, state.window_count)
                state.pending.append(reservation)

            if state.window_count >= rule.requests_per_period:
                # The caller is held until the window has passed
                state.window_count = 0
                if wait_time > 0:
                    self.logger.debug(f"Rate limit reached for domain {domain}, window resets in {wait_time:.3f}s")

            state.last_access = now + wait_time
            state.window_count += 1

        return state, wait_time, reservation

    @staticmethod
    def _commit(state: DomainState, reservation: Reservation):
        """The caller was admitted, so neither its slot nor any older one can be undone."""
        with state.lock:
            for index, pending in enumerate(state.pending):
                if pending is reservation:
                    del state.pending[:index + 1]
                    break

    def _release(self, state: DomainState, reservation: Reservation):
        """
        The caller gave up before admission.

        Undoes every cancelled reservation at the tail of the pending list,
        restoring the bookkeeping each one replaced. A cancelled reservation
        with newer live ones behind it is undone once those are gone.
        """
        with state.lock:
            reservation.cancelled = True
            while state.pending and state.pending[-1].cancelled:
                undone = state.pending.pop()
                state.last_access = undone.previous_access
                state.window_count = undone.previous_count
                self.logger.debug(f"Released admission slot reserved for {undone.admit_at:.3f}")

    @staticmethod
    def _compute_wait(rule: RateLimitRule, state: DomainState, now: float) -> float:
        if state.last_access is None:
            return 0.0

        # Negative while an earlier caller's reservation is still pending
        elapsed = now - state.last_access
        min_delay_wait = rule.min_delay - elapsed

        quota_wait = 0.0
        if state.window_count >= rule.requests_per_period:
            quota_wait = rule.period - elapsed

        return max(0.0, min_delay_wait, quota_wait)

    def _state_for(self, domain: str) -> DomainState:
        with self._registry_lock:
            state = self._states.get(domain)
            if state is None:
                state = DomainState()
                self._states[domain] = state
            return state

    # Diagnostics and housekeeping

    def get_wait_time(self, domain: str) -> float:
        """Current wait a new request to `domain` would get. Does not record anything."""
        domain = domain.lower()
        with self._registry_lock:
            state = self._states.get(domain)
        if state is None:
            return 0.0

        rule = self.rule_for(domain)
        with state.lock:
            return self._compute_wait(rule, state, self._clock())

    def get_domain_state(self, domain: str) -> Optional[DomainState]:
        """Snapshot of a domain's bookkeeping, or None if never accessed."""
        with self._registry_lock:
            state = self._states.get(domain.lower())
        if state is None:
            return None
        with state.lock:
            return DomainState(last_access=state.last_access, window_count=state.window_count)

    def clear_domain_state(self, domain: str):
        """Forget the counters and last access time of one domain."""
        with self._registry_lock:
            self._states.pop(domain.lower(), None)

    def reset(self):
        """Forget all counters and access times. Rules are kept."""
        with self._registry_lock:
            self._states.clear()
        self.logger.info("Rate limiter reset")

    def get_stats(self) -> Dict[str, int]:
        """Get limiter statistics."""
        with self._registry_lock:
            return {
                'tracked_domains': len(self._states),
                'domain_rules': len(self._domain_rules),
                'pattern_rules': len(self._pattern_rules),
            }
