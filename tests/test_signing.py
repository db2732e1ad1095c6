"""
Tests
"""

import os
import pytest
import random
import threading

from quorumsig import lifecycle
from quorumsig.ec_op import order
from quorumsig.encoding import AuthorizationRequest, encode_signature, message_hash
from quorumsig.errors import (InsufficientSharesError, InvalidPartialSignatureError, QuorumSigError,
                              SecurityInvariantViolation, SessionAbortedError, SessionTimeoutError)
from quorumsig.lifecycle import ThresholdManager
from quorumsig.shamir import majority
from quorumsig.signing import NonceRegistry, SessionState, Signer, ThresholdCoordinator
from quorumsig.verifier import verify


def ids(n):
    return [f"p{i}" for i in range(1, n + 1)]


def coordinator_for(t, n):
    return ThresholdCoordinator(ThresholdManager(t, ids(n)))


def sign_and_verify(coordinator, signer_ids, message=b"authorize:read:bucket/file"):
    msg_hash = message_hash(message)
    signature = coordinator.sign(msg_hash, signer_ids)
    print(f"signers {signer_ids} signature {signature}")
    return verify(msg_hash, encode_signature(signature), coordinator.manager.public_key_bytes())


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_three_of_five():
    coordinator = coordinator_for(3, 5)
    assert sign_and_verify(coordinator, ["p1", "p2", "p3"])


def test_two_of_five_never_completes():
    coordinator = coordinator_for(3, 5)
    with pytest.raises(InsufficientSharesError):
        coordinator.sign(message_hash(b"authorize:read:bucket/file"), ["p1", "p2"])
    # nothing was committed
    assert coordinator.registry._seen == set()


@pytest.mark.parametrize("t,n", [(1, 1), (1, 2), (2, 3), (3, 4), (4, 7)])
def test_round_trip_exact_threshold(t, n):
    coordinator = coordinator_for(t, n)
    signer_ids = random.sample(ids(n), t)
    assert sign_and_verify(coordinator, signer_ids)


def test_more_than_threshold_signers():
    coordinator = coordinator_for(3, 5)
    assert sign_and_verify(coordinator, ids(5))


def test_default_signers_and_authorize():
    coordinator = coordinator_for(2, 3)
    request = AuthorizationRequest("req-42", "alice", "bucket/file", "read")
    msg_hash, signature = coordinator.authorize(request)
    assert msg_hash == request.message_hash()
    assert verify(msg_hash, encode_signature(signature), coordinator.manager.public_key_bytes())


@pytest.mark.skipif(not os.environ.get('SOAK_TEST'), reason="No need to run every time.")
def test_random_threshold_signing():
    for _ in range(5):
        n = random.randint(1, 9)
        t = random.randint(majority(n), n)
        print(f"t={t} n={n}")
        coordinator = coordinator_for(t, n)
        assert sign_and_verify(coordinator, random.sample(ids(n), t))


def test_session_state_machine():
    coordinator = coordinator_for(2, 3)
    session = coordinator.open_session(message_hash(b"m"), ["p1", "p3"])
    assert session.state is SessionState.COLLECT_NONCES
    signers = [coordinator.signer(pid) for pid in session.signer_ids]
    session.add_commitment("p1", signers[0].commit(session.session_id))
    assert session.state is SessionState.COLLECT_NONCES
    session.add_commitment("p3", signers[1].commit(session.session_id))
    assert session.state is SessionState.COLLECT_PARTIALS
    assert session.commitment is not None and 0 <= session.challenge < order

    for signer in signers:
        result = session.add_partial(signer.participant_id, signer.sign(
            session.session_id, session.challenge, session.lagrange(signer.participant_id)))
    assert session.state is SessionState.DONE
    assert result == session.signature


def test_session_rejects_out_of_order_calls():
    coordinator = coordinator_for(2, 3)
    session = coordinator.open_session(message_hash(b"m"), ["p1", "p2"])
    with pytest.raises(SecurityInvariantViolation):
        session.add_partial("p1", 5)


def test_session_timeout():
    clock = FakeClock()
    coordinator = coordinator_for(2, 3)
    session = coordinator.open_session(message_hash(b"m"), ["p1", "p2"], timeout=5, clock=clock)
    session.add_commitment("p1", coordinator.signer("p1").commit(session.session_id))
    clock.now += 6
    with pytest.raises(SessionTimeoutError):
        session.add_commitment("p2", coordinator.signer("p2").commit(session.session_id))
    assert session.state is SessionState.FAILED
    with pytest.raises(SessionAbortedError):
        session.add_commitment("p2", coordinator.signer("p2").commit("another"))


def test_expire():
    clock = FakeClock()
    coordinator = coordinator_for(2, 3)
    session = coordinator.open_session(message_hash(b"m"), ["p1", "p2"], timeout=5, clock=clock)
    assert not session.expire()
    clock.now += 10
    assert session.expire()
    assert session.state is SessionState.FAILED


def test_eviction_mid_session_aborts():
    coordinator = coordinator_for(3, 5)
    session = coordinator.open_session(message_hash(b"m"), ["p1", "p2", "p3"])
    session.add_commitment("p1", coordinator.signer("p1").commit(session.session_id))
    coordinator.manager.remove("p3")
    with pytest.raises(SessionAbortedError):
        session.add_commitment("p2", coordinator.signer("p2").commit(session.session_id))
    assert session.state is SessionState.FAILED


def test_inactive_signer_rejected_up_front():
    coordinator = coordinator_for(3, 5)
    coordinator.manager.deactivate("p2")
    with pytest.raises(InsufficientSharesError):
        coordinator.open_session(message_hash(b"m"), ["p1", "p2", "p3"])
    assert sign_and_verify(coordinator, ["p1", "p3", "p4"])


def test_signing_after_reshare():
    coordinator = coordinator_for(3, 5)
    group_key = coordinator.manager.public_key_bytes()
    coordinator.manager.add("p6")
    coordinator.manager.set_threshold(4)
    assert coordinator.manager.public_key_bytes() == group_key
    assert sign_and_verify(coordinator, ["p6", "p2", "p5", "p1"])


def test_nonce_reuse_detected():
    registry = NonceRegistry()
    coordinator = ThresholdCoordinator(ThresholdManager(2, ids(3)), registry)
    first = coordinator.open_session(message_hash(b"one"), ["p1", "p2"])
    R = coordinator.signer("p1").commit(first.session_id)
    first.add_commitment("p1", R)

    second = coordinator.open_session(message_hash(b"two"), ["p1", "p2"])
    with pytest.raises(SecurityInvariantViolation):
        second.add_commitment("p1", R)


def test_signer_nonce_is_single_use():
    coordinator = coordinator_for(2, 3)
    signer = coordinator.signer("p1")
    signer.commit("s1")
    with pytest.raises(SecurityInvariantViolation):
        signer.commit("s1")
    signer.sign("s1", 1, 1)
    with pytest.raises(SecurityInvariantViolation):
        signer.sign("s1", 1, 1)
    signer.commit("s2")
    signer.discard("s2")
    with pytest.raises(SecurityInvariantViolation):
        signer.sign("s2", 1, 1)
    # nothing is kept for finished sessions
    assert signer.pending() == 0


def test_signer_holds_no_nonces_after_signing():
    coordinator = coordinator_for(3, 5)
    for i in range(10):
        assert sign_and_verify(coordinator, ["p1", "p2", "p3"], message=f"m{i}".encode())
    assert all(coordinator.signer(pid).pending() == 0 for pid in ["p1", "p2", "p3"])


def test_second_commitment_in_session_rejected():
    coordinator = coordinator_for(2, 3)
    session = coordinator.open_session(message_hash(b"m"), ["p1", "p2"])
    signer = coordinator.signer("p1")
    session.add_commitment("p1", signer.commit(session.session_id))
    signer.sign(session.session_id, 1, 1)
    with pytest.raises(SecurityInvariantViolation):
        session.add_commitment("p1", signer.commit(session.session_id))


@pytest.mark.parametrize("mutation", ["remove", "deactivate"])
def test_session_opened_during_roster_change(monkeypatch, mutation):
    coordinator = coordinator_for(3, 5)
    outcome = []
    racers = []

    def open_session():
        try:
            outcome.append(coordinator.open_session(message_hash(b"m"), ["p1", "p2", "p5"]))
        except Exception as exc:
            outcome.append(exc)

    real_reshare = lifecycle.reshare

    def reshare_and_race(*args, **kwargs):
        key_group = real_reshare(*args, **kwargs)
        # the new key group exists but the roster change is not installed yet
        racer = threading.Thread(target=open_session)
        racer.start()
        racers.append(racer)
        return key_group

    monkeypatch.setattr(lifecycle, "reshare", reshare_and_race)
    getattr(coordinator.manager, mutation)("p5")
    for racer in racers:
        racer.join()
    print(f"{mutation}: {outcome}")
    assert len(outcome) == 1
    assert isinstance(outcome[0], QuorumSigError)
    assert isinstance(outcome[0], InsufficientSharesError)
    assert sign_and_verify(coordinator, ["p1", "p2", "p4"])


def test_bad_partial_fails_session():
    coordinator = coordinator_for(2, 3)
    session = coordinator.open_session(message_hash(b"m"), ["p1", "p2"])
    signers = [coordinator.signer(pid) for pid in session.signer_ids]
    for signer in signers:
        session.add_commitment(signer.participant_id, signer.commit(session.session_id))
    partial = signers[0].sign(session.session_id, session.challenge, session.lagrange("p1"))
    with pytest.raises(InvalidPartialSignatureError) as excinfo:
        session.add_partial("p1", (partial + 1) % order)
    assert excinfo.value.participant_id == "p1"
    assert session.state is SessionState.FAILED


def test_concurrent_sessions():
    coordinator = coordinator_for(3, 5)
    public_key = coordinator.manager.public_key_bytes()
    results = {}

    def run(i):
        msg_hash = message_hash(f"authorize:read:bucket/file-{i}".encode())
        signature = coordinator.sign(msg_hash, ["p1", "p2", "p3"])
        results[i] = verify(msg_hash, encode_signature(signature), public_key)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert results == {i: True for i in range(4)}


def test_signer_independent_nonces():
    coordinator = coordinator_for(2, 3)
    signer = Signer(coordinator.manager.share_of("p1"))
    assert signer.commit("a") != signer.commit("b")
