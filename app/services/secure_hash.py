"""MIGS VPC secure hash.

Outgoing requests and incoming responses are signed over the sorted,
non-empty ``vpc_*`` parameters, excluding the hash itself and its type tag.

MD5:    UPPER(md5(secret + value1 + value2 + ...))
SHA256: UPPER(hmac_sha256(unhex(secret), "k1=v1&k2=v2&..."))
"""
import enum
import hashlib
import hmac
import logging
import re


logger = logging.getLogger(__name__)

SECURE_HASH_FIELD = "vpc_SecureHash"
SECURE_HASH_TYPE_FIELD = "vpc_SecureHashType"
_EXCLUDED_FIELDS = {SECURE_HASH_FIELD, SECURE_HASH_TYPE_FIELD}
_HEX_PAIRS = re.compile(r"(?:[0-9A-Fa-f]{2})*")
_HEX_SECRET = re.compile(r"^[0-9A-Fa-f]+$")


class SecureHashType(str, enum.Enum):
    MD5 = "MD5"
    SHA256 = "SHA256"


def parse_hash_type(value) -> SecureHashType | None:
    raw = str(value or "").strip().upper()
    for member in SecureHashType:
        if raw == member.value:
            return member
    return None


def is_hex_secret(secret: str) -> bool:
    return bool(_HEX_SECRET.match(secret or "")) and len(secret) % 2 == 0


def _decode_secret(secret: str) -> bytes:
    try:
        return bytes.fromhex(secret)
    except ValueError:
        # Keep the leading complete hex pairs, ignore the rest.
        prefix = _HEX_PAIRS.match(secret).group(0)
        logger.warning("Secure secret is not valid hex; using %s of %s characters", len(prefix), len(secret))
        return bytes.fromhex(prefix)


def _canonical_items(parameters: dict) -> list[tuple[str, str]]:
    items = []
    for key, value in parameters.items():
        if key in _EXCLUDED_FIELDS or value is None:
            continue
        text = str(value).strip()
        if text:
            items.append((key, text))
    items.sort(key=lambda item: item[0].encode("utf-8"))
    return items


def generate_secure_hash(parameters: dict, secret: str, hash_type: SecureHashType) -> str:
    items = _canonical_items(parameters)

    if hash_type == SecureHashType.MD5:
        data = secret + "".join(value for _, value in items)
        return hashlib.md5(data.encode("utf-8")).hexdigest().upper()

    if hash_type == SecureHashType.SHA256:
        data = "&".join(f"{key}={value}" for key, value in items)
        return hmac.new(_decode_secret(secret), data.encode("utf-8"), hashlib.sha256).hexdigest().upper()

    raise ValueError(f"Unsupported hash type: {hash_type}")


def verify_secure_hash(parameters: dict, secret: str, hash_type: SecureHashType = SecureHashType.SHA256) -> bool:
    provided = str(parameters.get(SECURE_HASH_FIELD) or "")
    if not provided:
        logger.warning("Secure hash missing from gateway parameters")
        return False
    calculated = generate_secure_hash(parameters, secret, hash_type)
    return hmac.compare_digest(calculated.encode("utf-8"), provided.encode("utf-8"))
