"""
PEM / JWK conversion and compact JWS signatures for PEM-imported keys
"""
from __future__ import annotations

import base64
import json
from typing import Any, Dict, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature, encode_dss_signature

from .errors import ConfigurationError

# JWK curve name -> (cryptography curve, JWS alg, hash)
EC_CURVES = {
    "secp256k1": (ec.SECP256K1, "ES256K", hashes.SHA256),
    "P-256": (ec.SECP256R1, "ES256", hashes.SHA256),
    "P-384": (ec.SECP384R1, "ES384", hashes.SHA384),
}
CURVE_NAMES = {"secp256k1": "secp256k1", "secp256r1": "P-256", "secp384r1": "P-384"}

PUBLIC_MEMBERS = ("kty", "crv", "x", "y")


def b64u(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64u_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _int_bytes(value: int, size: int) -> bytes:
    return value.to_bytes(size, "big")


def _coordinate_size(curve) -> int:
    return (curve.key_size + 7) // 8


def jwk_from_public_key(pub) -> Dict[str, str]:
    if isinstance(pub, ec.EllipticCurvePublicKey):
        name = CURVE_NAMES.get(pub.curve.name)
        if name is None:
            raise ConfigurationError(f"Unsupported curve: {pub.curve.name}")
        nums = pub.public_numbers()
        size = _coordinate_size(pub.curve)
        return {
            "kty": "EC",
            "crv": name,
            "x": b64u(_int_bytes(nums.x, size)),
            "y": b64u(_int_bytes(nums.y, size)),
        }
    if isinstance(pub, ed25519.Ed25519PublicKey):
        raw = pub.public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
        return {"kty": "OKP", "crv": "Ed25519", "x": b64u(raw)}
    raise ConfigurationError("Unsupported public key type")


def jwk_from_private_key(priv) -> Dict[str, str]:
    jwk = jwk_from_public_key(priv.public_key())
    if isinstance(priv, ec.EllipticCurvePrivateKey):
        size = _coordinate_size(priv.curve)
        jwk["d"] = b64u(_int_bytes(priv.private_numbers().private_value, size))
    else:
        raw = priv.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
        jwk["d"] = b64u(raw)
    return jwk


def private_key_from_jwk(jwk: Dict[str, Any]):
    if jwk.get("kty") == "EC" and jwk.get("crv") in EC_CURVES:
        curve_cls = EC_CURVES[jwk["crv"]][0]
        return ec.derive_private_key(int.from_bytes(b64u_decode(jwk["d"]), "big"), curve_cls())
    if jwk.get("kty") == "OKP" and jwk.get("crv") == "Ed25519":
        return ed25519.Ed25519PrivateKey.from_private_bytes(b64u_decode(jwk["d"]))
    raise ConfigurationError(f"Unsupported JWK: kty={jwk.get('kty')} crv={jwk.get('crv')}")


def load_pem_key_pair(public_pem: bytes, private_pem: bytes) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Import PEM keys and convert them to JWK

    Raises:
        ConfigurationError: unreadable PEM or keys that do not belong together
    """
    try:
        public_key = serialization.load_pem_public_key(public_pem)
        private_key = serialization.load_pem_private_key(private_pem, password=None)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Unable to import PEM keys: {e}")

    public_jwk = jwk_from_public_key(public_key)
    private_jwk = jwk_from_private_key(private_key)

    if not same_public_key(public_jwk, private_jwk):
        raise ConfigurationError("Public and private PEM keys are not a key pair")
    return public_jwk, private_jwk


def same_public_key(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    return all(a.get(m) == b.get(m) for m in PUBLIC_MEMBERS)


def public_jwk(jwk: Dict[str, Any]) -> Dict[str, Any]:
    return {m: jwk[m] for m in PUBLIC_MEMBERS if m in jwk}


def jws_algorithm(jwk: Dict[str, Any]) -> str:
    if jwk.get("kty") == "EC" and jwk.get("crv") in EC_CURVES:
        return EC_CURVES[jwk["crv"]][1]
    if jwk.get("kty") == "OKP" and jwk.get("crv") == "Ed25519":
        return "EdDSA"
    raise ConfigurationError(f"Unsupported JWK: kty={jwk.get('kty')} crv={jwk.get('crv')}")


def sign_jws_input(private_key, signing_input: bytes) -> bytes:
    """JWS signature bytes (r || s for ECDSA)"""
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        hash_cls = {"secp256k1": hashes.SHA256, "secp256r1": hashes.SHA256, "secp384r1": hashes.SHA384}[private_key.curve.name]
        der = private_key.sign(signing_input, ec.ECDSA(hash_cls()))
        r, s = decode_dss_signature(der)
        size = _coordinate_size(private_key.curve)
        return _int_bytes(r, size) + _int_bytes(s, size)
    return private_key.sign(signing_input)


def compact_jws(header: Dict[str, Any], payload: Dict[str, Any], sign) -> str:
    """
    Build a compact JWS

    Args:
        header: Protected header
        payload: JSON payload
        sign: Callable turning the signing input into signature bytes
    """
    protected = b64u(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    body = b64u(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{protected}.{body}"
    return f"{signing_input}.{b64u(sign(signing_input.encode('ascii')))}"


def public_key_from_jwk(jwk: Dict[str, Any]):
    if jwk.get("kty") == "EC" and jwk.get("crv") in EC_CURVES:
        curve_cls = EC_CURVES[jwk["crv"]][0]
        numbers = ec.EllipticCurvePublicNumbers(
            int.from_bytes(b64u_decode(jwk["x"]), "big"),
            int.from_bytes(b64u_decode(jwk["y"]), "big"),
            curve_cls(),
        )
        return numbers.public_key()
    if jwk.get("kty") == "OKP" and jwk.get("crv") == "Ed25519":
        return ed25519.Ed25519PublicKey.from_public_bytes(b64u_decode(jwk["x"]))
    raise ConfigurationError(f"Unsupported JWK: kty={jwk.get('kty')} crv={jwk.get('crv')}")


def verify_jws_input(jwk: Dict[str, Any], signing_input: bytes, signature: bytes) -> bool:
    """Check a JWS signature made by sign_jws_input"""
    public_key = public_key_from_jwk(jwk)
    try:
        if isinstance(public_key, ec.EllipticCurvePublicKey):
            size = _coordinate_size(public_key.curve)
            if len(signature) != 2 * size:
                return False
            der = encode_dss_signature(
                int.from_bytes(signature[:size], "big"),
                int.from_bytes(signature[size:], "big"),
            )
            hash_cls = EC_CURVES[jwk["crv"]][2]
            public_key.verify(der, signing_input, ec.ECDSA(hash_cls()))
        else:
            public_key.verify(signature, signing_input)
    except InvalidSignature:
        return False
    return True
