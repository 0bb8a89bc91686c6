from __future__ import annotations

import base64
import json
from pathlib import PurePosixPath
from typing import Any, Mapping

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from bootshell.common.errors import ManifestParseError, ManifestSignatureError
from bootshell.common.types import Manifest


MANIFEST_SIGNATURE_ALG = "ed25519"

# Keys excluded from the signed payload. The source location is rewritten when
# a remote manifest is adopted, so it can never be part of the signature.
_UNSIGNED_FIELDS = ("sourceLocation", "signatureAlg", "signatureKeyId", "signature")


def validate_artifact_path(value: str) -> str:
    # Normalize as posix to avoid platform-dependent traversal quirks.
    normalized = str(value or "").replace("\\", "/").strip()
    if not normalized:
        raise ManifestParseError("Manifest artifact path cannot be empty.")
    path = PurePosixPath(normalized)
    if path.is_absolute() or any(part == ".." for part in path.parts):
        raise ManifestParseError(f"Manifest artifact path must stay inside the cache: {value!r}")
    if ":" in path.parts[0]:
        raise ManifestParseError(f"Manifest artifact path contains drive designator: {value!r}")
    return normalized


def canonical_manifest_bytes(manifest: Manifest) -> bytes:
    from bootshell.common.manifest_io import manifest_to_dict

    payload = {k: v for k, v in manifest_to_dict(manifest).items() if k not in _UNSIGNED_FIELDS}
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True).encode("utf-8")


def _decode_private_key(value: str) -> Ed25519PrivateKey:
    text = str(value or "").strip()
    if not text:
        raise ValueError("Manifest signing key is empty.")

    if text.startswith("-----BEGIN"):
        key = serialization.load_pem_private_key(text.encode("utf-8"), password=None)
        if not isinstance(key, Ed25519PrivateKey):
            raise ValueError("Manifest signing key must be an Ed25519 private key.")
        return key

    try:
        raw = base64.b64decode(text, validate=True)
    except Exception as exc:
        raise ValueError("Manifest signing key must be PEM or base64-encoded raw Ed25519 key.") from exc
    if len(raw) != 32:
        raise ValueError("Base64 manifest signing key must decode to 32 bytes.")
    return Ed25519PrivateKey.from_private_bytes(raw)


def public_key_for(private_key_value: str) -> str:
    """Base64 raw public key matching a signing key, for ``BOOTSHELL_TRUSTED_KEYS``."""
    pub = _decode_private_key(private_key_value).public_key()
    raw = pub.public_bytes(encoding=serialization.Encoding.Raw, format=serialization.PublicFormat.Raw)
    return base64.b64encode(raw).decode("ascii")


def sign_manifest(manifest: Manifest, private_key_value: str, key_id: str) -> dict[str, Any]:
    """Serialize ``manifest`` with an Ed25519 signature over its canonical form."""
    from bootshell.common.manifest_io import manifest_to_dict

    key = _decode_private_key(private_key_value)
    signature = key.sign(canonical_manifest_bytes(manifest))

    signed = manifest_to_dict(manifest)
    signed["signatureAlg"] = MANIFEST_SIGNATURE_ALG
    signed["signatureKeyId"] = str(key_id).strip()
    signed["signature"] = base64.b64encode(signature).decode("ascii")
    return signed


def verify_manifest_signature(document: Mapping[str, Any], manifest: Manifest, trusted_keys: Mapping[str, str]) -> None:
    alg = str(document.get("signatureAlg", "")).strip().lower()
    key_id = str(document.get("signatureKeyId", "")).strip()
    signature_b64 = str(document.get("signature", "")).strip()

    if alg != MANIFEST_SIGNATURE_ALG:
        raise ManifestSignatureError(f"Unsupported manifest signature algorithm: {alg or '<missing>'}")
    if not key_id:
        raise ManifestSignatureError("Manifest signatureKeyId is missing.")
    if not signature_b64:
        raise ManifestSignatureError("Manifest signature is missing.")

    key_b64 = trusted_keys.get(key_id)
    if not key_b64:
        raise ManifestSignatureError(f"Manifest key ID {key_id!r} is not trusted.")

    try:
        signature = base64.b64decode(signature_b64, validate=True)
    except Exception as exc:
        raise ManifestSignatureError("Manifest signature is not valid base64.") from exc

    try:
        pub_raw = base64.b64decode(key_b64, validate=True)
    except Exception as exc:
        raise ManifestSignatureError(f"Trusted public key for {key_id!r} is invalid.") from exc
    if len(pub_raw) != 32:
        raise ManifestSignatureError(f"Trusted public key for {key_id!r} must be 32 bytes.")

    pub = Ed25519PublicKey.from_public_bytes(pub_raw)
    try:
        pub.verify(signature, canonical_manifest_bytes(manifest))
    except Exception as exc:
        raise ManifestSignatureError("Manifest signature verification failed.") from exc
