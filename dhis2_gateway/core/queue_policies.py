import random
from dataclasses import dataclass
from typing import Dict

from dhis2_gateway.core.config import settings

QUEUE_PREFIX = "q:dhis2"

CRITICAL = "critical"
DEFAULT = "default"
LOW = "low"
RETRY = "retry"
DEAD = "dead"

PRIORITY_QUEUES = (CRITICAL, DEFAULT, LOW)
INSPECTABLE_QUEUES = PRIORITY_QUEUES + (RETRY, DEAD)

# Retry budget attached to every new or requeued task
MAX_RETRY = settings.TASK_MAX_RETRY


@dataclass
class QueuePolicy:
    weight: int
    base_delay_seconds: int
    backoff_multiplier: float
    max_delay_seconds: int
    jitter_seconds: int
    lease_ttl_seconds: int


DEFAULT_POLICY = QueuePolicy(
    weight=3,
    base_delay_seconds=30,
    backoff_multiplier=2.0,
    max_delay_seconds=900,
    jitter_seconds=5,
    lease_ttl_seconds=300,
)


QUEUE_POLICIES: Dict[str, QueuePolicy] = {
    CRITICAL: QueuePolicy(
        weight=settings.QUEUE_PRIORITIES.get(CRITICAL, 6),
        base_delay_seconds=15,
        backoff_multiplier=2.0,
        max_delay_seconds=300,
        jitter_seconds=3,
        lease_ttl_seconds=300,
    ),
    DEFAULT: QueuePolicy(
        weight=settings.QUEUE_PRIORITIES.get(DEFAULT, 3),
        base_delay_seconds=DEFAULT_POLICY.base_delay_seconds,
        backoff_multiplier=DEFAULT_POLICY.backoff_multiplier,
        max_delay_seconds=DEFAULT_POLICY.max_delay_seconds,
        jitter_seconds=DEFAULT_POLICY.jitter_seconds,
        lease_ttl_seconds=DEFAULT_POLICY.lease_ttl_seconds,
    ),
    LOW: QueuePolicy(
        weight=settings.QUEUE_PRIORITIES.get(LOW, 1),
        base_delay_seconds=60,
        backoff_multiplier=2.0,
        max_delay_seconds=1800,
        jitter_seconds=10,
        lease_ttl_seconds=300,
    ),
}


def queue_key(name: str) -> str:
    return f"{QUEUE_PREFIX}:{name}"


def processing_key(name: str) -> str:
    return f"{QUEUE_PREFIX}:{name}:processing"


def task_key(task_id: str) -> str:
    return f"{QUEUE_PREFIX}:t:{task_id}"


def lease_key(task_id: str) -> str:
    return f"{QUEUE_PREFIX}:lease:{task_id}"


def compute_backoff(queue_name: str, retried: int) -> int:
    """Exponential backoff with jitter for the given lane and retry number."""
    policy = QUEUE_POLICIES.get(queue_name, DEFAULT_POLICY)
    delay = min(
        int(policy.base_delay_seconds * (policy.backoff_multiplier ** max(0, retried - 1))),
        policy.max_delay_seconds,
    )
    return max(0, delay + random.randint(0, policy.jitter_seconds))


def weighted_lane_order(weights: Dict[str, int] = None) -> list:
    """
    Order the priority lanes for one fetch round.

    Lanes are drawn without replacement with probability proportional to
    their weight, so a 6:3:1 split services critical first about 60% of
    the time without starving low.
    """
    if weights is None:
        weights = {name: policy.weight for name, policy in QUEUE_POLICIES.items()}
    remaining = {name: w for name, w in weights.items() if w > 0}
    order = []
    while remaining:
        names = list(remaining)
        picked = random.choices(names, weights=[remaining[n] for n in names], k=1)[0]
        order.append(picked)
        del remaining[picked]
    return order
