import random

from donation_relay.core.config import MAX_QUEUE_AGE_MS, MIN_BATCH_SIZE

# unpredictable order, a seeded PRNG would let an observer replay the shuffle
_system_random = random.SystemRandom()


def queue_age_ms(pending, now: int) -> int:
    if not pending:
        return 0
    oldest = min(d.timestamp for d in pending)
    return max(0, now - oldest)


def should_run(pending, now: int, min_batch_size: int = MIN_BATCH_SIZE,
               max_queue_age_ms: int = MAX_QUEUE_AGE_MS) -> bool:
    """
    Decide whether the pending set should go out as a batch now.

    Enough items make the anonymity set worth it; a single item that has
    waited ``max_queue_age_ms`` goes anyway so nobody waits forever.
    """
    if not pending:
        return False
    if len(pending) >= min_batch_size:
        return True
    return queue_age_ms(pending, now) >= max_queue_age_ms


def select_batch(pending, rng=None):
    """Return every pending item in a uniformly shuffled order."""
    batch = list(pending)
    # random.shuffle is Fisher-Yates
    (rng or _system_random).shuffle(batch)
    return batch
