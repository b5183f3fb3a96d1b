import time


def now_ms() -> int:
    return int(time.time() * 1000)


def expires_at_ms(seconds, *, default: int, start_ms: int = 0) -> int:
    """
    Convert a remote "seconds until expiry" value to an absolute epoch-ms deadline.
    Non-numeric or non-positive values fall back to `default` seconds.
    """
    try:
        sec = int(float(seconds))
    except (TypeError, ValueError):
        sec = 0
    if sec <= 0:
        sec = int(default)
    return int(start_ms or now_ms()) + sec * 1000


def seconds_until(deadline_ms: int, *, at_ms: int = 0) -> int:
    """Whole seconds left until deadline_ms, rounded up, clamped to >= 0."""
    remaining = int(deadline_ms) - int(at_ms or now_ms())
    if remaining <= 0:
        return 0
    return (remaining + 999) // 1000
