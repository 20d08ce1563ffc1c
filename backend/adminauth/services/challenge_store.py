"""
In-memory store for pending login / enrollment challenges.

Challenges are bearer capabilities: whoever holds the id may submit OTP
codes against it, so ids come from ``secrets``. The store is per-process;
running several workers needs sticky sessions or a shared backend.
"""

import secrets
import threading
from dataclasses import dataclass, field
from enum import Enum


class ChallengeKind(str, Enum):
    ENROLLMENT = "ENROLLMENT"
    LOGIN = "LOGIN"


def new_challenge_id() -> str:
    return secrets.token_urlsafe(32)


@dataclass(eq=False)
class Challenge:
    id: str
    admin_id: int
    kind: ChallengeKind
    created_at: float
    expire_at: float
    origin_ip: str | None = None
    temp_secret: str | None = None  # ENROLLMENT only, never persisted from here
    attempts: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        if (self.kind is ChallengeKind.ENROLLMENT) != (self.temp_secret is not None):
            raise ValueError("temp_secret must be set for ENROLLMENT challenges and only for them")

    @classmethod
    def enrollment(cls, admin_id: int, temp_secret: str, now: float, ttl_seconds: int,
                   origin_ip: str | None = None) -> "Challenge":
        return cls(
            id=new_challenge_id(),
            admin_id=admin_id,
            kind=ChallengeKind.ENROLLMENT,
            created_at=now,
            expire_at=now + ttl_seconds,
            origin_ip=origin_ip,
            temp_secret=temp_secret,
        )

    @classmethod
    def login(cls, admin_id: int, now: float, ttl_seconds: int,
              origin_ip: str | None = None) -> "Challenge":
        return cls(
            id=new_challenge_id(),
            admin_id=admin_id,
            kind=ChallengeKind.LOGIN,
            created_at=now,
            expire_at=now + ttl_seconds,
            origin_ip=origin_ip,
        )

    def is_expired(self, now: float) -> bool:
        return now > self.expire_at


class ChallengeStore:
    """Thread-safe challenge map.

    Every operation is a single dict call (atomic under the GIL), so distinct
    challenges never contend. Per-challenge attempt counting uses the
    challenge's own lock.
    """

    def __init__(self):
        self._challenges: dict[str, Challenge] = {}

    def add(self, challenge: Challenge) -> None:
        self._challenges[challenge.id] = challenge

    def get(self, challenge_id: str) -> Challenge | None:
        return self._challenges.get(challenge_id)

    def remove(self, challenge: Challenge) -> bool:
        """Remove ``challenge`` if it is still the stored entry for its id.

        Returns False if it was already removed or replaced by another object.
        """
        if self._challenges.get(challenge.id) is not challenge:
            return False
        return self._challenges.pop(challenge.id, None) is not None

    def sweep_expired(self, now: float) -> int:
        removed = 0
        for challenge_id, challenge in self._challenges.copy().items():
            if challenge.is_expired(now) and self._challenges.pop(challenge_id, None) is not None:
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self._challenges)

    def __contains__(self, challenge_id: object) -> bool:
        return challenge_id in self._challenges
