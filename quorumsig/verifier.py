"""
Stateless Schnorr verifier for threshold signatures.

Checks s*G == R + e*P with e = H(R_x, R_y, P_x, P_y, message_hash), using
only the arithmetic in ec_op so every step can be metered. It knows nothing
about signing sessions: the public key and the 96 byte signature are enough.

Cost is bounded by two fixed length scalar multiplications, one addition and
one hash, see max_verify_cost().
"""

import enum
import logging
from typing import Iterable, List, Tuple

from . import config
from .ec_op import ec_add, ec_scalar_mul, generator, max_scalar_mul_cost
from .encoding import HASH_LEN, challenge, decode_point, decode_signature
from .errors import MalformedInputError
from .meter import GasMeter

logger = logging.getLogger(__name__)


class VerifyOutcome(enum.Enum):
    VALID = "valid"
    # well formed input, equation does not hold. Possible forgery.
    INVALID = "invalid"
    # wrong lengths / out of range values. Client bug.
    MALFORMED = "malformed"


def max_verify_cost() -> int:
    costs = config.GAS_COSTS
    final_add = costs["ec_add"] + costs["ec_double"] + costs["inv"] + 3 * costs["mul"] + 2 * costs["add"]
    return 2 * max_scalar_mul_cost() + final_add + costs["hash"]


def check(message_hash: bytes, signature: bytes, public_key: bytes, meter=None) -> VerifyOutcome:
    """
    Verify and say why. Malformed input is reported, never parsed best effort.
    A BudgetExceededError from the meter is the only exception that escapes.
    """
    if meter is None:
        meter = GasMeter()
    try:
        if not isinstance(message_hash, (bytes, bytearray)) or len(message_hash) != HASH_LEN:
            raise MalformedInputError(f"message hash must be {HASH_LEN} bytes")
        sig = decode_signature(signature)
        P = decode_point(public_key)
    except MalformedInputError as exc:
        logger.warning("rejecting malformed verification input: %s", exc)
        return VerifyOutcome.MALFORMED

    e = challenge(sig.R, P, message_hash, meter)
    lhs = ec_scalar_mul(generator, sig.s, meter)
    rhs = ec_add(sig.R, ec_scalar_mul(P, e, meter), meter)
    if lhs == rhs:
        return VerifyOutcome.VALID
    logger.info("signature does not verify against %s", public_key.hex()[:16])
    return VerifyOutcome.INVALID


def verify(message_hash: bytes, signature: bytes, public_key: bytes, meter=None) -> bool:
    return check(message_hash, signature, public_key, meter) is VerifyOutcome.VALID


def batch_verify(items: Iterable[Tuple[bytes, bytes, bytes]], meter=None) -> List[bool]:
    """
    Independent verify() over (message_hash, signature, public_key) triples.
    The batch is capped at config.MAX_BATCH_SIZE so the total cost stays bounded.
    When a meter is given it is shared by the whole batch.
    """
    items = list(items)
    if len(items) > config.MAX_BATCH_SIZE:
        raise MalformedInputError(
            f"batch of {len(items)} exceeds the limit of {config.MAX_BATCH_SIZE}")
    return [verify(m, s, k, meter) for m, s, k in items]
