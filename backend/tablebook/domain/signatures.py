"""
Gateway signature checks.

Two channels, two secrets:
  - the client-relayed verify callback signs ``order_id|payment_id`` with the
    API key secret;
  - server-to-server webhooks sign the raw request body with the webhook
    secret.
Both are hex HMAC-SHA256 digests compared in constant time.
"""

import hashlib
import hmac
from typing import Optional, Union

from tablebook.core.exceptions import SignatureError


def _digest(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign_payment(secret: str, order_id: str, payment_id: str) -> str:
    return _digest(secret, f"{order_id}|{payment_id}".encode("utf-8"))


def sign_webhook(secret: str, raw_body: Union[bytes, str]) -> str:
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    return _digest(secret, raw_body)


def _matches(expected: str, provided: Optional[str]) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.strip().encode("utf-8"))


def verify_payment_signature(secret: str, order_id: str, payment_id: str, signature: Optional[str]) -> None:
    if not _matches(sign_payment(secret, order_id, payment_id), signature):
        raise SignatureError()


def verify_webhook_signature(secret: str, raw_body: Union[bytes, str], signature: Optional[str]) -> None:
    if not _matches(sign_webhook(secret, raw_body), signature):
        raise SignatureError()
