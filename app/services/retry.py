import random


def compute_backoff_seconds(attempt: int, base: float = 0.5, cap: float = 30.0) -> float:
    # exponential backoff with up to 10% jitter; attempt 1 is the first retry
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    jitter = random.uniform(0, exp * 0.1)
    return exp + jitter
