"""
Scalar sampling. Everything here draws from the OS CSPRNG; never swap in
the random module, the secrecy of every share depends on it.
"""

import secrets


def int_sample(upper: int) -> int:
    """Uniform integer in [1, upper)."""
    if upper <= 1:
        raise ValueError(f"upper bound must be > 1, got {upper}")
    return 1 + secrets.randbelow(upper - 1)
