"""Poll schedules and per-route poll policies.

``BackoffSchedule.delay_ms(n)`` is the wait before poll *n* (n >= 1):

    exponential: min(max(2^(n-1) * base, base), cap)   -> 1000, 2000, 4000, 4000, ...
    flat:        base                                  -> 1000, 1000, 1000, ...

``PollPolicyTable`` resolves a ``PollPolicy`` (schedule + overall
timeout) from the request method and path, so long-running routes can
poll for longer and back off harder than quick ones.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 4000
DEFAULT_POLL_TIMEOUT_MS = 60_000


@dataclass(frozen=True, slots=True)
class BackoffSchedule:
    """Delay schedule between polls.

    Attributes:
        base_ms: Delay before the first poll, and the floor afterwards.
        cap_ms: Upper bound on any delay (exponential schedules only).
        exponential: Double the delay on each poll when ``True``.
    """

    base_ms: int = DEFAULT_BASE_DELAY_MS
    cap_ms: int = DEFAULT_MAX_DELAY_MS
    exponential: bool = True

    def __post_init__(self) -> None:
        if self.base_ms < 0:
            msg = f"BackoffSchedule.base_ms must be >= 0, got {self.base_ms}"
            raise ValueError(msg)
        if self.exponential and self.cap_ms < self.base_ms:
            msg = f"BackoffSchedule.cap_ms ({self.cap_ms}) must be >= base_ms ({self.base_ms})"
            raise ValueError(msg)

    @classmethod
    def flat(cls, delay_ms: int = DEFAULT_BASE_DELAY_MS) -> BackoffSchedule:
        return cls(base_ms=delay_ms, cap_ms=delay_ms, exponential=False)

    def delay_ms(self, poll_number: int) -> int:
        """Milliseconds to wait before poll *poll_number* (1-based)."""
        if poll_number < 1:
            msg = f"poll_number must be >= 1, got {poll_number}"
            raise ValueError(msg)
        if not self.exponential:
            return self.base_ms
        # Cap the exponent so huge poll counts never build enormous ints.
        exponent = min(poll_number - 1, 32)
        return min(max((2**exponent) * self.base_ms, self.base_ms), self.cap_ms)


@dataclass(frozen=True, slots=True)
class PollPolicy:
    """How a client polls one kind of request."""

    schedule: BackoffSchedule = field(default_factory=BackoffSchedule)
    timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS

    def __post_init__(self) -> None:
        if self.timeout_ms < 0:
            msg = f"PollPolicy.timeout_ms must be >= 0, got {self.timeout_ms}"
            raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class PollRule:
    """Apply *policy* to requests whose path contains *path_fragment*.

    ``method=None`` matches any method.
    """

    path_fragment: str
    policy: PollPolicy
    method: str | None = None

    def matches(self, method: str, path: str) -> bool:
        if self.method is not None and self.method.upper() != method.upper():
            return False
        return self.path_fragment in path


class PollPolicyTable:
    """Ordered rules; the first match wins, otherwise the default policy."""

    def __init__(
        self,
        rules: list[PollRule] | None = None,
        default: PollPolicy | None = None,
    ) -> None:
        self._rules = list(rules or [])
        self._default = default or PollPolicy(schedule=BackoffSchedule.flat())

    @property
    def default(self) -> PollPolicy:
        return self._default

    def add_rule(self, rule: PollRule) -> None:
        self._rules.append(rule)

    def resolve(self, method: str, path: str) -> PollPolicy:
        for rule in self._rules:
            if rule.matches(method, path):
                return rule.policy
        return self._default


def default_policy_table() -> PollPolicyTable:
    """Exponential backoff for the upstream job routes, flat 1 s polling elsewhere."""
    return PollPolicyTable(
        rules=[PollRule(path_fragment="/upstream/", policy=PollPolicy())],
        default=PollPolicy(schedule=BackoffSchedule.flat()),
    )
