# bakery/vnpay.py
"""
VNPay 2.1.0 gateway client: signed payment URLs, signature checks on the
return/IPN callbacks and the merchant refund API.

Amounts on the wire are VND x 100. Timestamps are ``yyyyMMddHHmmss`` in
Vietnam time (UTC+7).
"""
import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Mapping, Optional
from urllib.parse import quote_plus, urlencode

import requests
from fastapi import HTTPException, Request

from .config import VNP_API_URL, VNP_HASH_SECRET, VNP_RETURN_URL, VNP_TMN_CODE, VNP_URL

log = logging.getLogger("bakery.vnpay")

VERSION = "2.1.0"
VN_TZ = timezone(timedelta(hours=7))
SUCCESS = "00"

# messages for the response codes a storefront user can run into
RESPONSE_MESSAGES = {
    "00": "Payment successful",
    "07": "Payment held for fraud review",
    "09": "Card or account is not registered for internet banking",
    "10": "Card or account verification failed too many times",
    "11": "Payment window expired",
    "12": "Card or account is locked",
    "13": "Wrong one-time password",
    "24": "Payment cancelled by customer",
    "51": "Insufficient balance",
    "65": "Daily transaction limit exceeded",
    "75": "Bank is under maintenance",
    "79": "Wrong payment password too many times",
    "97": "Invalid signature",
    "99": "Unknown error",
}


def request_ip(request: Request) -> str:
    """Caller address for ``vnp_IpAddr``, honouring ``X-Forwarded-For``."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def vnp_timestamp(when: Optional[datetime] = None) -> str:
    when = when or datetime.now(timezone.utc)
    return when.astimezone(VN_TZ).strftime("%Y%m%d%H%M%S")


def to_vnp_amount(amount: float) -> int:
    return int(round(amount)) * 100


def from_vnp_amount(raw: str) -> float:
    return int(raw) / 100


def _hmac(data: str) -> str:
    return hmac.new(VNP_HASH_SECRET.encode("utf-8"), data.encode("utf-8"), hashlib.sha512).hexdigest()


def _canonical(params: Mapping[str, str]) -> str:
    """Sorted ``key=value`` pairs joined by ``&``; values form-encoded (space as ``+``)."""
    return urlencode(sorted((k, str(v)) for k, v in params.items()), quote_via=quote_plus)


def sign(params: Mapping[str, str]) -> str:
    return _hmac(_canonical(params))


def payment_url(order_id: int, amount: float, client_ip: str,
                bank_code: Optional[str] = None, order_info: Optional[str] = None) -> str:
    params: Dict[str, str] = {
        "vnp_Version": VERSION,
        "vnp_Command": "pay",
        "vnp_TmnCode": VNP_TMN_CODE,
        "vnp_Locale": "vn",
        "vnp_CurrCode": "VND",
        "vnp_TxnRef": str(order_id),
        "vnp_OrderInfo": order_info or f"Payment for order {order_id}",
        "vnp_OrderType": "billpayment",
        "vnp_Amount": str(to_vnp_amount(amount)),
        "vnp_ReturnUrl": VNP_RETURN_URL,
        "vnp_CreateDate": vnp_timestamp(),
        "vnp_IpAddr": client_ip,
    }
    if bank_code:
        params["vnp_BankCode"] = bank_code
    query = _canonical(params)
    return f"{VNP_URL}?{query}&vnp_SecureHash={_hmac(query)}"


def verify(params: Mapping[str, str]) -> bool:
    """Check ``vnp_SecureHash`` over every other ``vnp_`` parameter."""
    received = params.get("vnp_SecureHash", "")
    data = {
        k: v for k, v in params.items()
        if k.startswith("vnp_") and k not in ("vnp_SecureHash", "vnp_SecureHashType")
    }
    return bool(received) and hmac.compare_digest(received.lower(), sign(data))


def response_message(code: str) -> str:
    return RESPONSE_MESSAGES.get(code, RESPONSE_MESSAGES["99"])


def refund(txn_ref: str, amount: float, transaction_no: str, transaction_date: str,
           created_by: str, client_ip: str, reason: str) -> dict:
    """
    Full refund of a completed payment. Returns the gateway response on
    success and raises a 502 ``HTTPException`` otherwise.
    """
    body = {
        "vnp_RequestId": uuid.uuid4().hex[:32],
        "vnp_Version": VERSION,
        "vnp_Command": "refund",
        "vnp_TmnCode": VNP_TMN_CODE,
        "vnp_TransactionType": "02",
        "vnp_TxnRef": txn_ref,
        "vnp_Amount": str(to_vnp_amount(amount)),
        "vnp_TransactionNo": transaction_no or "",
        "vnp_TransactionDate": transaction_date or "",
        "vnp_CreateBy": created_by,
        "vnp_CreateDate": vnp_timestamp(),
        "vnp_IpAddr": client_ip,
        "vnp_OrderInfo": reason,
    }
    hash_fields = (
        "vnp_RequestId", "vnp_Version", "vnp_Command", "vnp_TmnCode", "vnp_TransactionType",
        "vnp_TxnRef", "vnp_Amount", "vnp_TransactionNo", "vnp_TransactionDate",
        "vnp_CreateBy", "vnp_CreateDate", "vnp_IpAddr", "vnp_OrderInfo",
    )
    body["vnp_SecureHash"] = _hmac("|".join(body[f] for f in hash_fields))

    try:
        r = requests.post(VNP_API_URL, json=body, timeout=25)
    except requests.RequestException as e:
        log.error("VNPay refund request failed for %s: %r", txn_ref, e)
        raise HTTPException(status_code=502, detail="Payment gateway unreachable")
    if r.status_code != 200:
        log.error("VNPay refund HTTP %s for %s: %s", r.status_code, txn_ref, r.text)
        raise HTTPException(status_code=502, detail="Payment gateway error")

    try:
        data = r.json()
    except ValueError:
        log.error("VNPay refund for %s returned a non-JSON body: %s", txn_ref, r.text[:200])
        raise HTTPException(status_code=502, detail="Payment gateway error")
    code = data.get("vnp_ResponseCode")
    if code != SUCCESS:
        log.warning("VNPay refund rejected for %s: %s %s", txn_ref, code, data.get("vnp_Message"))
        raise HTTPException(status_code=502, detail=f"Refund rejected by gateway ({code})")
    log.info("VNPay refund ok for %s: %s", txn_ref, data.get("vnp_TransactionNo"))
    return data
