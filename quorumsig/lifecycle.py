"""
Threshold and participant lifecycle.

Keeps the active roster and threshold of one key group. Every mutation is
validated on the state it would produce (1 <= t <= active, t >= ceil(active / 2))
and then reshares the key to the new roster so old shares are useless,
keeping the group public key fixed.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Sequence, Tuple

from .errors import ConfigurationError, InsufficientSharesError
from .shamir import KeyGroup, KeyShare, deal, reshare, validate_threshold

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    participant_id: str
    active: bool = True


class ThresholdManager:
    """
    Single writer for one group: add / remove / set_threshold read then write the
    active count, so they all run under one lock.
    """

    def __init__(self, threshold: int, participant_ids: Sequence[str]):
        self._lock = threading.RLock()
        self._key_group = deal(threshold, participant_ids)
        self._participants: Dict[str, Participant] = {
            pid: Participant(pid) for pid in participant_ids}

    @classmethod
    def from_key_group(cls, key_group: KeyGroup) -> "ThresholdManager":
        """
        Wrap shares loaded from storage. Only the loaded holders become participants,
        so this is meant for signing, not for administering the full roster.
        """
        if len(key_group.shares) < key_group.threshold:
            raise InsufficientSharesError(
                f"Need at least {key_group.threshold} shares, got {len(key_group.shares)}")
        manager = cls.__new__(cls)
        manager._lock = threading.RLock()
        manager._key_group = key_group
        manager._participants = {pid: Participant(pid) for pid in key_group.shares}
        return manager

    # --- Queries --------------------------------------------------------------------------------

    @property
    def key_group(self) -> KeyGroup:
        with self._lock:
            return self._key_group

    @property
    def threshold(self) -> int:
        with self._lock:
            return self._key_group.threshold

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._key_group.epoch

    def get_config(self) -> Tuple[int, int]:
        """(threshold, total participants)"""
        with self._lock:
            return self._key_group.threshold, len(self._participants)

    def get_active(self) -> List[str]:
        with self._lock:
            return [p.participant_id for p in self._participants.values() if p.active]

    def snapshot(self) -> Tuple[FrozenSet[str], KeyGroup]:
        """Active ids and the key group they hold shares in, read in one step."""
        with self._lock:
            active = frozenset(pid for pid, p in self._participants.items() if p.active)
            return active, self._key_group

    def is_active(self, participant_id: str) -> bool:
        with self._lock:
            participant = self._participants.get(participant_id)
            return participant is not None and participant.active

    def share_of(self, participant_id: str) -> KeyShare:
        with self._lock:
            try:
                return self._key_group.shares[participant_id]
            except KeyError:
                raise ConfigurationError(f"Participant not found: {participant_id}") from None

    def public_key_bytes(self) -> bytes:
        with self._lock:
            return self._key_group.public_key_bytes()

    # --- Mutations ------------------------------------------------------------------------------

    def add(self, participant_id: str) -> None:
        with self._lock:
            if participant_id in self._participants:
                raise ConfigurationError(f"Participant already exists: {participant_id}")
            active = self.get_active() + [participant_id]
            validate_threshold(self.threshold, len(active))
            key_group = self._reshared(active, self.threshold)
            self._key_group = key_group
            self._participants[participant_id] = Participant(participant_id)
            logger.info("added participant %s", participant_id)

    def remove(self, participant_id: str) -> None:
        with self._lock:
            self._require(participant_id)
            active = [pid for pid in self.get_active() if pid != participant_id]
            if len(active) < self.threshold:
                raise ConfigurationError(
                    "Cannot remove participant: would violate threshold requirement")
            validate_threshold(self.threshold, len(active))
            key_group = self._reshared(active, self.threshold)
            self._key_group = key_group
            del self._participants[participant_id]
            logger.info("removed participant %s", participant_id)

    def set_threshold(self, threshold: int) -> None:
        with self._lock:
            active = self.get_active()
            validate_threshold(threshold, len(active))
            old = self.threshold
            self._key_group = self._reshared(active, threshold)
            logger.info("threshold changed %d -> %d", old, threshold)

    def deactivate(self, participant_id: str) -> None:
        """Take a participant out of signing without evicting it. Its share is revoked."""
        with self._lock:
            participant = self._require(participant_id)
            if not participant.active:
                return
            active = [pid for pid in self.get_active() if pid != participant_id]
            if len(active) < self.threshold:
                raise ConfigurationError(
                    "Cannot deactivate participant: would violate threshold requirement")
            validate_threshold(self.threshold, len(active))
            key_group = self._reshared(active, self.threshold)
            self._key_group = key_group
            participant.active = False
            logger.info("deactivated participant %s", participant_id)

    def activate(self, participant_id: str) -> None:
        with self._lock:
            participant = self._require(participant_id)
            if participant.active:
                return
            active = self.get_active() + [participant_id]
            validate_threshold(self.threshold, len(active))
            key_group = self._reshared(active, self.threshold)
            self._key_group = key_group
            participant.active = True
            logger.info("activated participant %s", participant_id)

    # --- Internals ------------------------------------------------------------------------------

    def _require(self, participant_id: str) -> Participant:
        participant = self._participants.get(participant_id)
        if participant is None:
            raise ConfigurationError(f"Participant not found: {participant_id}")
        return participant

    def _reshared(self, active_ids: List[str], threshold: int) -> KeyGroup:
        # Only members that stay active deal, so a leaving member never touches the new shares.
        # The caller installs the result together with its roster change, under the lock.
        dealers = [pid for pid in active_ids if pid in self._key_group.shares]
        return reshare(self._key_group, active_ids, threshold, dealer_ids=dealers)
