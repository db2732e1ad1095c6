"""
cli.py — operator CLI for quorum signing keys

    quorumsig keygen --t 3 --n 5 --out .quorum_shares
    quorumsig sign --shares .quorum_shares --signers p1,p2,p3 --message "authorize:read:bucket/file"
    quorumsig verify --public-key <hex64> --signature <hex96> --message "authorize:read:bucket/file"

Files written by keygen:
  {out}/share_<id>.json  → {"participant_id": str, "index": int, "value": hex}
  {out}/group.json       → {"threshold": t, "total": n, "public_key": hex, "public_shares": {id: hex}}

The group secret is never written. Protect {out} and move each share to its
holder as soon as possible; this tool does not encrypt them.
"""

import json
import logging
import os
import sys
from typing import List

import click

from . import config
from .encoding import decode_point, encode_point, encode_signature, message_hash
from .errors import QuorumSigError
from .lifecycle import ThresholdManager
from .shamir import KeyGroup, KeyShare
from .ec_op import pub_key_from_priv
from .signing import ThresholdCoordinator
from .verifier import VerifyOutcome, check


def _split_ids(raw: str) -> List[str]:
    return [s.strip() for s in raw.split(",") if s.strip()]


def load_key_group(directory: str, signer_ids: List[str]) -> KeyGroup:
    with open(os.path.join(directory, "group.json"), encoding="utf-8") as f:
        group = json.load(f)
    shares = {}
    for pid in signer_ids:
        with open(os.path.join(directory, f"share_{pid}.json"), encoding="utf-8") as f:
            raw = json.load(f)
        value = int(raw["value"], 16)
        public_share = pub_key_from_priv(value)
        if encode_point(public_share).hex() != group["public_shares"][pid]:
            raise click.ClickException(f"share for {pid} does not match group.json")
        shares[pid] = KeyShare(pid, raw["index"], value, public_share)
    return KeyGroup(group["threshold"], decode_point(bytes.fromhex(group["public_key"])), shares)


@click.group()
@click.option("--log-level", default=config.LOG_LEVEL, show_default=True, help="Python logging level")
def cli(log_level: str) -> None:
    """Threshold Schnorr keys and signatures over secp256k1."""
    logging.basicConfig(level=log_level.upper(), stream=sys.stderr,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@cli.command()
@click.option("--t", "threshold", type=int, default=3, show_default=True, help="Signers required")
@click.option("--n", "total", type=int, default=5, show_default=True, help="Total participants")
@click.option("--ids", default=None, help="Comma-separated participant ids (default p1..pN)")
@click.option("--out", type=str, default=".quorum_shares", show_default=True, help="Output directory")
def keygen(threshold: int, total: int, ids: str, out: str) -> None:
    """Trusted dealer key generation: one share file per participant."""
    participant_ids = _split_ids(ids) if ids else [f"p{i}" for i in range(1, total + 1)]
    try:
        manager = ThresholdManager(threshold, participant_ids)
    except QuorumSigError as exc:
        raise click.ClickException(str(exc))

    key_group = manager.key_group
    os.makedirs(out, exist_ok=True)
    for share in key_group.shares.values():
        path = os.path.join(out, f"share_{share.participant_id}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"participant_id": share.participant_id, "index": share.index,
                       "value": f"{share.value:064x}"}, f)

    meta = {
        "threshold": key_group.threshold,
        "total": len(key_group.shares),
        "public_key": key_group.public_key_bytes().hex(),
        "public_shares": {pid: encode_point(Y).hex() for pid, Y in key_group.public_shares.items()},
    }
    with open(os.path.join(out, "group.json"), "w", encoding="utf-8") as f:
        json.dump(meta, f, indent=2)

    click.echo(f"Created {len(participant_ids)} shares with threshold {threshold} in {out}")
    click.echo(meta["public_key"])


@cli.command()
@click.option("--shares", "directory", default=".quorum_shares", show_default=True, help="Share directory")
@click.option("--signers", required=True, help="Comma-separated participant ids")
@click.option("--message", required=True, help="Message to sign (hashed with keccak256)")
def sign(directory: str, signers: str, message: str) -> None:
    """Run both signing rounds with the given holders and print the 96 byte signature."""
    signer_ids = _split_ids(signers)
    try:
        manager = ThresholdManager.from_key_group(load_key_group(directory, signer_ids))
        signature = ThresholdCoordinator(manager).sign(message_hash(message.encode("utf-8")), signer_ids)
    except QuorumSigError as exc:
        raise click.ClickException(str(exc))
    except (OSError, KeyError, ValueError) as exc:
        # ValueError covers json.JSONDecodeError and bad hex in a share file
        raise click.ClickException(f"can not load shares: {exc}")
    click.echo(encode_signature(signature).hex())


@cli.command()
@click.option("--public-key", required=True, help="64 byte group public key, hex")
@click.option("--signature", required=True, help="96 byte signature, hex")
@click.option("--message", required=True, help="Signed message")
def verify(public_key: str, signature: str, message: str) -> None:
    """Print valid / invalid / malformed; exit 1 unless valid."""
    try:
        sig_bytes = bytes.fromhex(signature)
        key_bytes = bytes.fromhex(public_key)
    except ValueError:
        click.echo(VerifyOutcome.MALFORMED.value)
        raise SystemExit(1)
    outcome = check(message_hash(message.encode("utf-8")), sig_bytes, key_bytes)
    click.echo(outcome.value)
    if outcome is not VerifyOutcome.VALID:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
