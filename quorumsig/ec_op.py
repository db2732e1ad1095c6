"""
Raw arithmetic for secp256k1.
Utilities for:
    1. Field/scalar add, sub, mul modulo p or order.
    2. Modular inverse via Fermat's little theorem.
    3. EC point addition and doubling.
    4. EC point negation.
    5. EC scalar multiplication.
    6. Public key generation from a scalar.

    No signature library is used here on purpose so that the verifier can be
    metered operation by operation.

    Point addition is implementing:
    https://en.wikipedia.org/wiki/Elliptic_curve_point_multiplication#Point_addition

    NOTE: ec_scalar_mul branches on the bits of the scalar. The number of loop
    iterations is fixed but the work per iteration is not, so this is not
    constant time. Do not run it on secret scalars outside a trusted host.
"""

from collections import namedtuple

from . import config

# Create a simple Point class to represent points on the curve
Point = namedtuple("Point", "x y")


class Point(Point):
    def __repr__(self):
        """Uncompressed"""
        return f"04{self.x:0>64X}{self.y:0>64X}"


# The point at infinity. generator * order = O
# (0, 0) never satisfies y^2 = x^3 + 7 so it can not collide with a real point.
O = Point(0, 0)


# SECP256K1 domain params
p = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F
a = 0
b = 7
generator = Point(0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798,
                  0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8)
order = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SCALAR_BITS = 256
#############################


def _charge(meter, op):
    if meter is not None:
        meter.charge(op)


def field_add(x, y, modulus=p, meter=None):
    _charge(meter, "add")
    return (x + y) % modulus


def field_sub(x, y, modulus=p, meter=None):
    _charge(meter, "add")
    return (x - y) % modulus


def field_mul(x, y, modulus=p, meter=None):
    _charge(meter, "mul")
    return (x * y) % modulus


def mod_inv(x, modulus=p, meter=None):
    """
    Compute an inverse for x modulo a prime modulus.

    Uses Fermat's little theorem, x^(m-2) = x^-1 mod m, which only holds
    because both p and order are prime.
    Inverting zero is a programming error and never returns silently.
    """
    if modulus <= 0:
        raise ValueError(f"Modulus must be positive, got {modulus}")
    if x % modulus == 0:
        raise ZeroDivisionError("Impossible inverse")
    _charge(meter, "inv")
    return pow(x, modulus - 2, modulus)


def scalar_inv_mod_order(x, meter=None):
    return mod_inv(x, order, meter)


def valid(P):
    """
    wiestrass curve: y^2 = x^3 + ax + b
    Determine whether we have a valid representation of a point
    on our curve.  We assume that the x and y coordinates
    are always reduced modulo p, so that we can compare
    two points for equality with a simple ==.
    """
    if P == O:
        return True
    return (
        0 <= P.x < p and 0 <= P.y < p and
        (P.y**2 - (P.x**3 + a*P.x + b)) % p == 0)


def ec_neg(P):
    """
    Inverse of the point P on the elliptic curve y^2 = x^3 + ax + b.
    https://en.wikipedia.org/wiki/Elliptic_curve_point_multiplication#Point_negation
    """
    if P == O:
        return P
    return Point(P.x, (-P.y) % p)


def ec_double(P, meter=None):
    """
    Tangent rule, slope = 3x^2 / 2y.
    """
    _charge(meter, "ec_double")
    if P == O or P.y == 0:
        return O
    slope = field_mul(3 * P.x * P.x + a, mod_inv(2 * P.y, p, meter), p, meter)
    x = field_sub(field_mul(slope, slope, p, meter), 2 * P.x, p, meter)
    y = field_sub(field_mul(slope, P.x - x, p, meter), P.y, p, meter)
    return Point(x, y)


def ec_add(P, Q, meter=None):
    """
    Sum of the points P and Q on the elliptic curve y^2 = x^3 + ax + b.
    https://en.wikipedia.org/wiki/Elliptic_curve_point_multiplication#Point_addition
    """
    # Deal with the special cases where either P, Q, or P + Q is
    # the origin.
    if P == O:
        return Q
    if Q == O:
        return P
    if P.x == Q.x:
        if P.y != Q.y:
            # Q == -P
            return O
        return ec_double(P, meter)

    _charge(meter, "ec_add")
    slope = field_mul(Q.y - P.y, mod_inv(Q.x - P.x, p, meter), p, meter)
    x = field_sub(field_mul(slope, slope, p, meter), P.x + Q.x, p, meter)
    y = field_sub(field_mul(slope, P.x - x, p, meter), P.y, p, meter)
    return Point(x, y)


def ec_scalar_mul(P, scalar, meter=None):
    """
    Double and add, least significant bit first.

    Always walks SCALAR_BITS bits so the iteration count does not depend on
    the scalar. order fits in 256 bits so every reduced scalar is covered.
    """
    scalar %= order
    cache = P
    ret = O
    # keep on doubling the base and only add for binary 1.
    for _ in range(SCALAR_BITS):
        if scalar & 1:
            ret = ec_add(ret, cache, meter)
        cache = ec_double(cache, meter)
        scalar >>= 1
    return ret


def pub_key_from_priv(private, meter=None):
    return ec_scalar_mul(generator, private, meter)


def max_scalar_mul_cost():
    """
    Upper bound on the gas ec_scalar_mul can charge, used to size budgets.
    """
    costs = config.GAS_COSTS
    step_add = costs["ec_add"] + costs["inv"] + 3 * costs["mul"] + 2 * costs["add"]
    step_double = costs["ec_double"] + costs["inv"] + 3 * costs["mul"] + 2 * costs["add"]
    # an ec_add on equal points falls through to ec_double
    return SCALAR_BITS * (max(step_add, step_double) + step_double)
