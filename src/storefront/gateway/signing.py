"""VNPay request signing.

Parameters are sorted by name, empty values dropped, URL-encoded and joined
into a query string; the signature is the hex HMAC-SHA512 of that string.
"""

import hashlib
import hmac
from collections.abc import Mapping
from urllib.parse import quote_plus

from protean.exceptions import ValidationError

from storefront.gateway.port import PaymentCallback

HASH_FIELD = "vnp_SecureHash"
HASH_TYPE_FIELD = "vnp_SecureHashType"
_UNSIGNED_FIELDS = {HASH_FIELD, HASH_TYPE_FIELD}


def signed_fields(params: Mapping[str, str]) -> dict[str, str]:
    return {
        key: str(value)
        for key, value in params.items()
        if key not in _UNSIGNED_FIELDS and value is not None and str(value) != ""
    }


def canonical_query(params: Mapping[str, str]) -> str:
    fields = signed_fields(params)
    return "&".join(f"{quote_plus(key)}={quote_plus(fields[key])}" for key in sorted(fields))


def hmac_sha512(secret: str, data: str) -> str:
    return hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha512).hexdigest()


def sign(params: Mapping[str, str], secret: str) -> str:
    return hmac_sha512(secret, canonical_query(params))


def verify(params: Mapping[str, str], secret: str) -> bool:
    received = str(params.get(HASH_FIELD) or "")
    if not received:
        return False
    return hmac.compare_digest(received.lower(), sign(params, secret))


def digest(params: Mapping[str, str]) -> str:
    """Stable fingerprint of a callback, used to recognise redeliveries."""
    return hashlib.sha256(canonical_query(params).encode("utf-8")).hexdigest()


def parse_callback(params: Mapping[str, str]) -> PaymentCallback:
    txn_ref = str(params.get("vnp_TxnRef") or "").strip()
    if not txn_ref:
        raise ValidationError({"vnp_TxnRef": ["Missing transaction reference"]})

    try:
        amount = int(str(params.get("vnp_Amount"))) / 100
    except ValueError:
        raise ValidationError({"vnp_Amount": ["Amount must be a whole number of minor units"]}) from None

    return PaymentCallback(
        txn_ref=txn_ref,
        amount=amount,
        response_code=str(params.get("vnp_ResponseCode") or ""),
        transaction_status=params.get("vnp_TransactionStatus"),
        transaction_no=params.get("vnp_TransactionNo"),
        bank_code=params.get("vnp_BankCode"),
        pay_date=params.get("vnp_PayDate"),
    )
