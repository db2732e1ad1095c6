"""
Trusted dealer key generation and proactive resharing over the secp256k1 scalar field.

The threshold scheme is based on values t, n_p
t   = minimum number of participants who can sign together.
n_p = total number of participants.

Simplified protocol:
1. The dealer draws a random polynomial f of degree t-1. f(0) is the group secret.
2. Participant at position i (1 indexed, 0 is reserved for the secret) receives f(i).
3. The group public key f(0)*G is published; the polynomial is wiped.
Any t shares recover f(0) with Lagrange interpolation at x = 0. t-1 shares reveal nothing.

Resharing follows the redistribution idea in https://eprint.iacr.org/2019/017.pdf (CHURP):
t_old holders each re-share their Lagrange weighted share with a fresh polynomial,
and the sums of the sub shares are the new shares of the same secret.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from .ec_op import O, Point, ec_add, ec_scalar_mul, order, pub_key_from_priv, scalar_inv_mod_order
from .encoding import encode_point
from .errors import ConfigurationError, SecurityInvariantViolation
from .rand import int_sample

logger = logging.getLogger(__name__)


def majority(active_count: int) -> int:
    """Smallest threshold a group of active_count may use, ceil(active_count / 2)."""
    return (active_count + 1) // 2


def validate_threshold(threshold: int, active_count: int) -> None:
    if active_count < 1:
        raise ConfigurationError("at least one participant is required")
    if threshold < 1 or threshold > active_count:
        raise ConfigurationError(
            f"Threshold must be between 1 and total participants ({active_count}), got {threshold}")
    if threshold < majority(active_count):
        raise SecurityInvariantViolation(
            f"Threshold must be at least majority ({majority(active_count)} of {active_count}), got {threshold}")


class Polynomial:
    def __init__(self, t, secret=None):
        # coefficients, lowest degree first. coef[0] is the secret.
        self.coef = [int_sample(order) for _ in range(t)]
        if secret is not None:
            self.coef[0] = secret % order

    @property
    def secret(self):
        return self.coef[0]

    def __call__(self, x):
        # Horner's method. For y = ax^2 + bx + c, self.coef = [c, b, a]:
        #   y = (a*(x) + b) * (x) + c
        y = 0
        for c in reversed(self.coef):
            y = (y * x + c) % order
        return y

    def zeroize(self):
        for i in range(len(self.coef)):
            self.coef[i] = 0


@dataclass
class KeyShare:
    """
    One participant's share of the group secret.
    index is positional (1 based) and only meaningful inside its KeyGroup epoch.
    """
    participant_id: str
    index: int
    value: int = field(repr=False)
    public_share: Point

    def zeroize(self):
        self.value = 0


@dataclass
class KeyGroup:
    threshold: int
    group_public_key: Point
    shares: Dict[str, KeyShare]
    epoch: int = 0

    @property
    def participant_ids(self) -> List[str]:
        return list(self.shares)

    @property
    def public_shares(self) -> Dict[str, Point]:
        return {pid: s.public_share for pid, s in self.shares.items()}

    def public_key_bytes(self) -> bytes:
        return encode_point(self.group_public_key)

    def share_values(self) -> Dict[str, int]:
        """DKG output handed to the administrative collaborator, id -> share."""
        return {pid: s.value for pid, s in self.shares.items()}

    def zeroize(self):
        for share in self.shares.values():
            share.zeroize()


def lagrange_coefficient(index: int, indices: Sequence[int]) -> int:
    """
    Lagrange basis polynomial for `index` over `indices`, evaluated at x = 0.

        L_i = prod_{j != i} (0 - x_j) / (x_i - x_j) mod order
    """
    if len(set(indices)) != len(indices):
        raise ConfigurationError(f"duplicate indices {sorted(indices)}")
    if index not in indices:
        raise ConfigurationError(f"index {index} not in signing set {sorted(indices)}")
    if min(indices) < 1:
        raise ConfigurationError("indices start at 1, 0 is reserved for the secret")
    num = 1
    denom = 1
    for j in indices:
        if j != index:
            num = num * (-j % order) % order
            denom = denom * ((index - j) % order) % order
    return num * scalar_inv_mod_order(denom) % order


def recover_secret(points: Sequence[Tuple[int, int]]) -> int:
    """
    Interpolate (x, y) points at x = 0. Only correct with at least t points.
    """
    if not points:
        raise ConfigurationError("no shares provided")
    xs = [x for x, _ in points]
    secret = 0
    for x, y in points:
        secret = (secret + y * lagrange_coefficient(x, xs)) % order
    return secret


def _interpolate_public(points: Sequence[Tuple[int, Point]]) -> Point:
    """sum L_i * Y_i, the public counterpart of recover_secret."""
    xs = [x for x, _ in points]
    acc = O
    for x, Y in points:
        acc = ec_add(acc, ec_scalar_mul(Y, lagrange_coefficient(x, xs)))
    return acc


def _unique_ids(participant_ids: Sequence[str]) -> List[str]:
    ids = list(participant_ids)
    if len(set(ids)) != len(ids):
        raise ConfigurationError("participant ids must be unique")
    return ids


def deal(threshold: int, participant_ids: Sequence[str]) -> KeyGroup:
    """
    Trusted dealer DKG. Returns the group public key and one share per participant.
    Share delivery over a confidential channel is the caller's job.
    """
    ids = _unique_ids(participant_ids)
    if len(ids) < threshold:
        raise ConfigurationError(f"Need at least {threshold} participants for threshold")
    validate_threshold(threshold, len(ids))

    poly = Polynomial(threshold)
    try:
        group_public_key = pub_key_from_priv(poly.secret)
        shares = {}
        for i, pid in enumerate(ids, start=1):
            value = poly(i)
            shares[pid] = KeyShare(pid, i, value, pub_key_from_priv(value))
    finally:
        poly.zeroize()

    logger.info("dealt %d-of-%d key, group key %s", threshold, len(ids),
                encode_point(group_public_key).hex()[:16])
    return KeyGroup(threshold, group_public_key, shares)


def reshare(key_group: KeyGroup, participant_ids: Sequence[str], threshold: int,
            dealer_ids: Sequence[str] = None) -> KeyGroup:
    """
    Move the group secret onto a new membership and threshold without ever
    reconstructing it, keeping group_public_key fixed.

    The first key_group.threshold current holders (only those in dealer_ids when
    given, so an evicted participant takes no part) act as dealers. Holder i splits
    L_i * y_i with a fresh polynomial g_i of degree threshold - 1; new participant j
    gets sum_i g_i(j). Since sum_i L_i * y_i = f(0) the new shares interpolate to
    the same secret.
    """
    ids = _unique_ids(participant_ids)
    validate_threshold(threshold, len(ids))
    holders = [s for pid, s in key_group.shares.items() if dealer_ids is None or pid in dealer_ids]
    if len(holders) < key_group.threshold:
        raise SecurityInvariantViolation("fewer holders than the current threshold, can not reshare")

    dealers = holders[:key_group.threshold]
    dealer_indices = [s.index for s in dealers]

    new_values = [0] * len(ids)
    for holder in dealers:
        weighted = holder.value * lagrange_coefficient(holder.index, dealer_indices) % order
        sub = Polynomial(threshold, secret=weighted)
        try:
            for j in range(len(ids)):
                new_values[j] = (new_values[j] + sub(j + 1)) % order
        finally:
            sub.zeroize()

    shares = {
        pid: KeyShare(pid, j, new_values[j - 1], pub_key_from_priv(new_values[j - 1]))
        for j, pid in enumerate(ids, start=1)
    }
    for j in range(len(new_values)):
        new_values[j] = 0

    check = [(s.index, s.public_share) for s in list(shares.values())[:threshold]]
    if _interpolate_public(check) != key_group.group_public_key:
        raise SecurityInvariantViolation("reshare changed the group public key")

    key_group.zeroize()
    logger.info("reshared key epoch %d -> %d, %d-of-%d", key_group.epoch,
                key_group.epoch + 1, threshold, len(ids))
    return KeyGroup(threshold, key_group.group_public_key, shares, key_group.epoch + 1)
