"""
Two round threshold Schnorr signing with a trusted dealer key.

Round 1: every chosen signer draws a fresh nonce k_i and publishes R_i = k_i*G.
         The coordinator sums R = sum R_i and computes
         e = H(R_x, R_y, P_x, P_y, message_hash) mod order.
Round 2: every signer returns s_i = k_i + e * y_i * L_i mod order where L_i is its
         Lagrange coefficient over the signing set. s = sum s_i mod order.

The result (R_x, R_y, s) satisfies s*G = R + e*P and verifies with verifier.verify.

Session states:
    COLLECT_NONCES -> AGGREGATE_COMMITMENT -> COMPUTE_CHALLENGE
        -> COLLECT_PARTIALS -> AGGREGATE_SIGNATURE -> DONE
and FAILED from anywhere on timeout, eviction, epoch change or a bad partial.

This is a reduced FROST: no binding factors and no nonce proofs.
"""

import enum
import logging
import threading
import time
import uuid
from typing import Dict, List, Optional, Sequence, Tuple

from . import config
from .ec_op import O, Point, ec_add, ec_scalar_mul, order, pub_key_from_priv
from .encoding import HASH_LEN, AuthorizationRequest, Signature, challenge
from .errors import (ConfigurationError, InsufficientSharesError, InvalidPartialSignatureError,
                     MalformedInputError, SecurityInvariantViolation, SessionAbortedError,
                     SessionTimeoutError)
from .lifecycle import ThresholdManager
from .rand import int_sample
from .shamir import KeyShare, lagrange_coefficient

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    COLLECT_NONCES = "collect_nonces"
    AGGREGATE_COMMITMENT = "aggregate_commitment"
    COMPUTE_CHALLENGE = "compute_challenge"
    COLLECT_PARTIALS = "collect_partials"
    AGGREGATE_SIGNATURE = "aggregate_signature"
    DONE = "done"
    FAILED = "failed"


class NonceRegistry:
    """
    Every commitment ever accepted, per participant. Seeing the same R_i twice
    means a nonce was reused, which leaks the share: s_i - s_i' = (e - e') * y_i * L_i.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._seen = set()

    def record(self, participant_id: str, commitment: Point) -> None:
        key = (participant_id, commitment.x, commitment.y)
        with self._lock:
            if key in self._seen:
                logger.critical("nonce reuse detected for participant %s", participant_id)
                raise SecurityInvariantViolation(
                    f"nonce commitment reused by participant {participant_id}")
            self._seen.add(key)


class Signer:
    """
    The participant side of signing. Holds one share and one nonce per open session.
    A nonce is used for exactly one partial signature and then wiped.
    """

    def __init__(self, share: KeyShare):
        self.share = share
        self._lock = threading.Lock()
        self._nonces: Dict[str, int] = {}

    @property
    def participant_id(self) -> str:
        return self.share.participant_id

    def commit(self, session_id: str) -> Point:
        with self._lock:
            if session_id in self._nonces:
                raise SecurityInvariantViolation(
                    f"{self.participant_id} already committed for session {session_id}")
            k = int_sample(order)
            self._nonces[session_id] = k
        return pub_key_from_priv(k)

    def sign(self, session_id: str, e: int, lagrange: int) -> int:
        with self._lock:
            k = self._nonces.pop(session_id, None)
            if k is None:
                raise SecurityInvariantViolation(
                    f"{self.participant_id} has no unused nonce for session {session_id}")
        return (k + e * self.share.value * lagrange) % order

    def pending(self) -> int:
        with self._lock:
            return len(self._nonces)

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._nonces.pop(session_id, None)


class SigningSession:
    def __init__(self, manager: ThresholdManager, message_hash: bytes, signer_ids: Sequence[str],
                 registry: NonceRegistry, timeout: Optional[float] = None, clock=time.monotonic):
        if not isinstance(message_hash, (bytes, bytearray)) or len(message_hash) != HASH_LEN:
            raise MalformedInputError(f"message hash must be {HASH_LEN} bytes")
        signer_ids = list(signer_ids)
        if len(set(signer_ids)) != len(signer_ids):
            raise ConfigurationError("duplicate signers in signing set")
        active, key_group = manager.snapshot()
        if len(signer_ids) < key_group.threshold:
            raise InsufficientSharesError(
                f"Need at least {key_group.threshold} signers, got {len(signer_ids)}")
        for pid in signer_ids:
            if pid not in active or pid not in key_group.shares:
                raise InsufficientSharesError(f"signer {pid} is not an active participant")

        self.session_id = uuid.uuid4().hex
        self.message_hash = bytes(message_hash)
        self.signer_ids = signer_ids
        self.state = SessionState.COLLECT_NONCES
        self._manager = manager
        self._registry = registry
        self._clock = clock
        self._deadline = clock() + (config.SESSION_TIMEOUT_SECONDS if timeout is None else timeout)

        self.epoch = key_group.epoch
        self.group_public_key = key_group.group_public_key
        self._indices = {pid: key_group.shares[pid].index for pid in signer_ids}
        self._public_shares = {pid: key_group.shares[pid].public_share for pid in signer_ids}

        self._commitments: Dict[str, Point] = {}
        self._partials: Dict[str, int] = {}
        self.commitment: Optional[Point] = None
        self.challenge: Optional[int] = None
        self._lagrange: Dict[str, int] = {}
        self.signature: Optional[Signature] = None

    # --- Lifecycle checks -----------------------------------------------------------------------

    def _fail(self, exc):
        self.state = SessionState.FAILED
        logger.warning("session %s failed: %s", self.session_id, exc)
        raise exc

    def _ensure_live(self, expected: SessionState) -> None:
        if self.state is SessionState.FAILED:
            raise SessionAbortedError(f"session {self.session_id} already failed")
        if self.state is not expected:
            raise SecurityInvariantViolation(
                f"session {self.session_id} is in {self.state.value}, expected {expected.value}")
        if self._clock() > self._deadline:
            self._fail(SessionTimeoutError(
                f"session {self.session_id} timed out with "
                f"{len(self._commitments)} commitments, {len(self._partials)} partials"))
        if self._manager.epoch != self.epoch:
            self._fail(SessionAbortedError("key epoch changed during the session: roster or threshold moved"))

    def expire(self) -> bool:
        """Move an overdue session to FAILED. Returns True when it did."""
        if self.state in (SessionState.DONE, SessionState.FAILED):
            return False
        if self._clock() > self._deadline:
            logger.warning("session %s expired in %s", self.session_id, self.state.value)
            self.state = SessionState.FAILED
            return True
        return False

    def _transition(self, state: SessionState) -> None:
        logger.debug("session %s: %s -> %s", self.session_id, self.state.value, state.value)
        self.state = state

    # --- Round 1 --------------------------------------------------------------------------------

    def add_commitment(self, participant_id: str, commitment: Point) -> None:
        self._ensure_live(SessionState.COLLECT_NONCES)
        if participant_id not in self._indices:
            raise ConfigurationError(f"{participant_id} is not in this signing set")
        if participant_id in self._commitments:
            raise SecurityInvariantViolation(f"{participant_id} sent a second commitment")
        if commitment == O:
            raise MalformedInputError("commitment is the point at infinity")
        self._registry.record(participant_id, commitment)
        self._commitments[participant_id] = commitment
        if len(self._commitments) == len(self.signer_ids):
            self._aggregate_commitment()

    def _aggregate_commitment(self) -> None:
        self._transition(SessionState.AGGREGATE_COMMITMENT)
        R = O
        for pid in self.signer_ids:
            R = ec_add(R, self._commitments[pid])
        if R == O:
            self._fail(SecurityInvariantViolation("aggregate commitment is the point at infinity"))
        self.commitment = R

        self._transition(SessionState.COMPUTE_CHALLENGE)
        self.challenge = challenge(R, self.group_public_key, self.message_hash)
        indices = list(self._indices.values())
        self._lagrange = {pid: lagrange_coefficient(idx, indices) for pid, idx in self._indices.items()}
        self._transition(SessionState.COLLECT_PARTIALS)

    def lagrange(self, participant_id: str) -> int:
        return self._lagrange[participant_id]

    # --- Round 2 --------------------------------------------------------------------------------

    def add_partial(self, participant_id: str, partial: int) -> Optional[Signature]:
        """
        Accept s_i after checking s_i*G == R_i + (e*L_i)*Y_i.
        Returns the final signature once the last partial arrives.
        """
        self._ensure_live(SessionState.COLLECT_PARTIALS)
        if participant_id not in self._indices:
            raise ConfigurationError(f"{participant_id} is not in this signing set")
        if participant_id in self._partials:
            raise SecurityInvariantViolation(f"{participant_id} sent a second partial signature")
        if not 0 <= partial < order:
            raise MalformedInputError("partial signature out of range")

        weight = self.challenge * self._lagrange[participant_id] % order
        expected = ec_add(self._commitments[participant_id],
                          ec_scalar_mul(self._public_shares[participant_id], weight))
        if pub_key_from_priv(partial) != expected:
            self._fail(InvalidPartialSignatureError(participant_id))

        self._partials[participant_id] = partial
        if len(self._partials) == len(self.signer_ids):
            return self._aggregate_signature()
        return None

    def _aggregate_signature(self) -> Signature:
        self._transition(SessionState.AGGREGATE_SIGNATURE)
        s = sum(self._partials.values()) % order
        self.signature = Signature(self.commitment.x, self.commitment.y, s)
        self._transition(SessionState.DONE)
        logger.info("session %s produced a signature with signers %s",
                    self.session_id, ",".join(self.signer_ids))
        return self.signature


class ThresholdCoordinator:
    """
    Drives sessions against the signers of one ThresholdManager.
    Sessions for different messages are independent and may run in parallel.
    """

    def __init__(self, manager: ThresholdManager, registry: Optional[NonceRegistry] = None):
        self.manager = manager
        self.registry = registry or NonceRegistry()
        self._lock = threading.Lock()
        self._signers: Dict[str, Signer] = {}
        self._signers_epoch = None

    def signer(self, participant_id: str) -> Signer:
        """Local signer for a participant, rebuilt whenever the key epoch moves."""
        _, key_group = self.manager.snapshot()
        with self._lock:
            if self._signers_epoch != key_group.epoch:
                self._signers = {}
                self._signers_epoch = key_group.epoch
            if participant_id not in self._signers:
                share = key_group.shares.get(participant_id)
                if share is None:
                    raise ConfigurationError(f"Participant not found: {participant_id}")
                self._signers[participant_id] = Signer(share)
            return self._signers[participant_id]

    def default_signers(self) -> List[str]:
        return self.manager.get_active()[:self.manager.threshold]

    def open_session(self, message_hash: bytes, signer_ids: Sequence[str],
                     timeout: Optional[float] = None, clock=time.monotonic) -> SigningSession:
        return SigningSession(self.manager, message_hash, signer_ids, self.registry, timeout, clock)

    def sign(self, message_hash: bytes, signer_ids: Optional[Sequence[str]] = None,
             timeout: Optional[float] = None) -> Signature:
        if signer_ids is None:
            signer_ids = self.default_signers()
        session = self.open_session(message_hash, signer_ids, timeout)
        signers = [self.signer(pid) for pid in session.signer_ids]
        try:
            for signer in signers:
                session.add_commitment(signer.participant_id, signer.commit(session.session_id))
            signature = None
            for signer in signers:
                partial = signer.sign(session.session_id, session.challenge,
                                      session.lagrange(signer.participant_id))
                signature = session.add_partial(signer.participant_id, partial)
        finally:
            for signer in signers:
                signer.discard(session.session_id)
        return signature

    def authorize(self, request: AuthorizationRequest,
                  signer_ids: Optional[Sequence[str]] = None) -> Tuple[bytes, Signature]:
        msg_hash = request.message_hash()
        return msg_hash, self.sign(msg_hash, signer_ids)
