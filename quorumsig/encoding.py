"""
Fixed binary encodings shared by the signer and the verifier.

    public key : P_x (32) || P_y (32)                  big endian, no 0x04 prefix
    signature  : R_x (32) || R_y (32) || s (32)        big endian, no DER
    challenge  : keccak256(R_x || R_y || P_x || P_y || message_hash) mod order

The challenge layout is the same as solidity's
abi.encodePacked(uint256, uint256, uint256, uint256, bytes32) so an on-chain
verifier computes the identical e. Changing anything here breaks every
signature ever produced.
"""

import struct
from collections import namedtuple
from dataclasses import dataclass

from eth_utils.crypto import keccak

from .ec_op import Point, order, p, valid, O
from .errors import MalformedInputError

COORD_LEN = 32
HASH_LEN = 32
PUBLIC_KEY_LEN = 2 * COORD_LEN
SIGNATURE_LEN = 3 * COORD_LEN

REQUEST_ENCODING_VERSION = 1

Signature = namedtuple("Signature", "rx ry s")


class Signature(Signature):
    def __repr__(self):
        return f"{self.rx:0>64X}{self.ry:0>64X}{self.s:0>64X}"

    @property
    def R(self):
        return Point(self.rx, self.ry)


def i2osp(x: int, length: int = COORD_LEN) -> bytes:
    """
    https://tools.ietf.org/html/rfc8017#section-4.1
    """
    if x < 0 or x >= 256 ** length:
        raise MalformedInputError(f"integer does not fit in {length} bytes")
    return x.to_bytes(length, byteorder="big")


def os2ip(data: bytes) -> int:
    return int.from_bytes(data, byteorder="big")


def message_hash(message: bytes) -> bytes:
    return keccak(primitive=message)


def encode_point(point: Point) -> bytes:
    if point == O or not valid(point):
        raise MalformedInputError("can not encode point at infinity or off-curve point")
    return i2osp(point.x) + i2osp(point.y)


def decode_point(data: bytes) -> Point:
    """
    Parse a 64 byte public key. Never coerces: wrong length, a coordinate
    >= p or a point off the curve raise MalformedInputError.
    """
    if not isinstance(data, (bytes, bytearray)) or len(data) != PUBLIC_KEY_LEN:
        raise MalformedInputError(f"public key must be {PUBLIC_KEY_LEN} bytes")
    x, y = os2ip(data[:COORD_LEN]), os2ip(data[COORD_LEN:])
    point = Point(x, y)
    if x >= p or y >= p or point == O or not valid(point):
        raise MalformedInputError("public key is not a point on secp256k1")
    return point


def encode_signature(sig: Signature) -> bytes:
    if sig.s >= order:
        raise MalformedInputError("s out of range")
    return i2osp(sig.rx) + i2osp(sig.ry) + i2osp(sig.s)


def decode_signature(data: bytes) -> Signature:
    if not isinstance(data, (bytes, bytearray)) or len(data) != SIGNATURE_LEN:
        raise MalformedInputError(f"signature must be {SIGNATURE_LEN} bytes")
    rx = os2ip(data[:COORD_LEN])
    ry = os2ip(data[COORD_LEN:2 * COORD_LEN])
    s = os2ip(data[2 * COORD_LEN:])
    if rx >= p or ry >= p:
        raise MalformedInputError("R coordinate out of range")
    if s >= order:
        raise MalformedInputError("s out of range")
    R = Point(rx, ry)
    if R == O or not valid(R):
        raise MalformedInputError("R is not a point on secp256k1")
    return Signature(rx, ry, s)


def challenge(R: Point, public_key: Point, msg_hash: bytes, meter=None) -> int:
    """
    e = H(R_x, R_y, P_x, P_y, message_hash) mod order
    """
    if len(msg_hash) != HASH_LEN:
        raise MalformedInputError(f"message hash must be {HASH_LEN} bytes")
    if meter is not None:
        meter.charge("hash")
    digest = keccak(primitive=(
        i2osp(R.x) + i2osp(R.y) +
        i2osp(public_key.x) + i2osp(public_key.y) +
        bytes(msg_hash)))
    return os2ip(digest) % order


@dataclass(frozen=True)
class AuthorizationRequest:
    """
    The record an authorization collaborator asks the quorum to sign.
    """
    request_id: str
    principal: str
    resource: str
    action: str

    def encode(self) -> bytes:
        """
        version (1) || for each field: len (2, big endian) || utf-8 bytes
        """
        out = bytearray([REQUEST_ENCODING_VERSION])
        for field in (self.request_id, self.principal, self.resource, self.action):
            raw = field.encode("utf-8")
            if len(raw) > 0xFFFF:
                raise MalformedInputError("request field longer than 65535 bytes")
            out += struct.pack(">H", len(raw)) + raw
        return bytes(out)

    @classmethod
    def decode(cls, data: bytes) -> "AuthorizationRequest":
        if not data or data[0] != REQUEST_ENCODING_VERSION:
            raise MalformedInputError("unsupported request encoding version")
        fields = []
        offset = 1
        for _ in range(4):
            if offset + 2 > len(data):
                raise MalformedInputError("truncated request")
            (length,) = struct.unpack_from(">H", data, offset)
            offset += 2
            if offset + length > len(data):
                raise MalformedInputError("truncated request")
            try:
                fields.append(bytes(data[offset:offset + length]).decode("utf-8"))
            except UnicodeDecodeError as exc:
                raise MalformedInputError("request field is not utf-8") from exc
            offset += length
        if offset != len(data):
            raise MalformedInputError("trailing bytes after request")
        return cls(*fields)

    def message_hash(self) -> bytes:
        return message_hash(self.encode())
