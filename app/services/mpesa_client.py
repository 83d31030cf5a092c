import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from app.core.config import Settings
from app.core.exceptions import GatewayError, ValidationError
from app.models.plan_model import SubscriptionPlan

logger = logging.getLogger(__name__)

SUCCESS_RESULT_CODE = 0
# Returned by the STK query endpoint while the payer has not answered the prompt yet.
STILL_PROCESSING_ERROR_CODE = "500.001.1001"
# Kenya does not observe DST; Daraja timestamps are East Africa Time.
EAT = timezone(timedelta(hours=3))
TOKEN_EXPIRY_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class StkPushResult:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    response_description: Optional[str] = None
    customer_message: Optional[str] = None


@dataclass(frozen=True)
class ProviderStatus:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    result_code: Optional[int]
    result_desc: Optional[str]

    @property
    def is_pending(self) -> bool:
        return self.result_code is None


def normalize_phone_number(phone_number: str) -> str:
    """Rewrites 07XXXXXXXX / +2547XXXXXXXX forms to the bare 2547XXXXXXXX form Daraja expects."""
    phone = phone_number.strip().replace(" ", "")
    if phone.startswith("+254"):
        phone = phone[1:]
    elif phone.startswith("0"):
        phone = f"254{phone[1:]}"
    if not (phone.startswith("254") and len(phone) == 12 and phone.isascii() and phone.isdigit()):
        raise ValidationError(f"Invalid phone number format: {phone_number}")
    return phone


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class MpesaClient:
    """
    Thin async client for the Daraja STK push APIs. Never retries; the caller
    owns the retry policy. Does not touch local storage.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.consumer_key = settings.MPESA_CONSUMER_KEY
        self.consumer_secret = settings.MPESA_CONSUMER_SECRET
        self.shortcode = settings.MPESA_SHORTCODE
        self.passkey = settings.MPESA_PASSKEY
        self.transaction_type = settings.MPESA_TRANSACTION_TYPE
        self.account_reference = settings.MPESA_ACCOUNT_REFERENCE
        self.base_url = settings.mpesa_base_url

        self._client = http_client or httpx.AsyncClient(
            base_url=self.base_url, timeout=settings.MPESA_TIMEOUT_SECONDS
        )
        self._owns_client = http_client is None

        self._access_token: Optional[str] = None
        self._token_expiry: float = 0.0
        self._token_lock = asyncio.Lock()

    async def close(self):
        if self._owns_client:
            await self._client.aclose()

    def _timestamp(self) -> str:
        return datetime.now(EAT).strftime("%Y%m%d%H%M%S")

    def _password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            logger.warning("M-Pesa request %s %s failed: %s", method, path, e)
            raise GatewayError(f"Could not reach M-Pesa: {e}") from e

    def _json(self, response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError(
                f"Malformed response from M-Pesa (HTTP {response.status_code})", payload=response.text
            ) from e
        if not isinstance(data, dict):
            raise GatewayError("Malformed response from M-Pesa: expected a JSON object", payload=data)
        return data

    def _raise_for_error(self, response: httpx.Response, data: dict):
        if response.status_code == 401:
            self._access_token = None
        if response.is_error:
            message = data.get("errorMessage") or data.get("ResponseDescription") or response.reason_phrase
            raise GatewayError(
                f"M-Pesa error (HTTP {response.status_code}): {message}",
                response_code=data.get("errorCode"),
                payload=data,
            )

    async def get_access_token(self) -> str:
        """Client-credentials token, cached until shortly before it expires."""
        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expiry:
                return self._access_token

            response = await self._send(
                "GET",
                "/oauth/v1/generate",
                params={"grant_type": "client_credentials"},
                auth=(self.consumer_key, self.consumer_secret),
            )
            data = self._json(response)
            self._raise_for_error(response, data)

            token = data.get("access_token")
            if not token:
                raise GatewayError("M-Pesa token response did not include an access_token", payload=data)
            expires_in = _to_int(data.get("expires_in")) or 3599
            self._access_token = token
            self._token_expiry = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
            return token

    async def _authorized_post(self, path: str, payload: dict) -> tuple[httpx.Response, dict]:
        token = await self.get_access_token()
        response = await self._send(
            "POST",
            path,
            json=payload,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
        )
        return response, self._json(response)

    async def initiate_push(self, plan: SubscriptionPlan, payer_phone: str, callback_url: str) -> StkPushResult:
        """Sends an STK push prompt for the plan's stored amount."""
        phone = normalize_phone_number(payer_phone)
        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": self.transaction_type,
            "Amount": plan.amount,
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": callback_url,
            "AccountReference": self.account_reference,
            "TransactionDesc": f"Payment for {plan.name}",
        }

        response, data = await self._authorized_post("/mpesa/stkpush/v1/processrequest", payload)
        self._raise_for_error(response, data)

        response_code = str(data.get("ResponseCode", ""))
        if response_code != "0":
            message = data.get("ResponseDescription") or data.get("errorMessage") or "STK push rejected"
            raise GatewayError(
                f"STK push failed with response code {response_code or 'missing'}: {message}",
                response_code=response_code or None,
                payload=data,
            )

        checkout_request_id = data.get("CheckoutRequestID")
        if not checkout_request_id:
            raise GatewayError("STK push response did not include a CheckoutRequestID", payload=data)

        logger.info("STK push accepted: CheckoutRequestID=%s amount=%s", checkout_request_id, plan.amount)
        return StkPushResult(
            checkout_request_id=checkout_request_id,
            merchant_request_id=data.get("MerchantRequestID"),
            response_description=data.get("ResponseDescription"),
            customer_message=data.get("CustomerMessage"),
        )

    async def query_status(self, checkout_request_id: str) -> ProviderStatus:
        """Asks the provider for the outcome of a push request. Pending is reported with result_code None."""
        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }

        response, data = await self._authorized_post("/mpesa/stkpushquery/v1/query", payload)
        if response.is_error and data.get("errorCode") == STILL_PROCESSING_ERROR_CODE:
            return ProviderStatus(
                checkout_request_id=checkout_request_id,
                merchant_request_id=None,
                result_code=None,
                result_desc=data.get("errorMessage"),
            )
        self._raise_for_error(response, data)

        response_code = str(data.get("ResponseCode", ""))
        if response_code != "0":
            raise GatewayError(
                f"STK query failed with response code {response_code or 'missing'}: "
                f"{data.get('ResponseDescription') or 'unknown error'}",
                response_code=response_code or None,
                payload=data,
            )

        result_code = _to_int(data.get("ResultCode"))
        if result_code is None:
            raise GatewayError("STK query response did not include a ResultCode", payload=data)

        return ProviderStatus(
            checkout_request_id=data.get("CheckoutRequestID") or checkout_request_id,
            merchant_request_id=data.get("MerchantRequestID"),
            result_code=result_code,
            result_desc=data.get("ResultDesc"),
        )
