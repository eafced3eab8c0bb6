import json
import logging
from urllib.parse import quote

import requests
from django.conf import settings
from requests import RequestException

from ..exceptions import (
    ConfigurationError,
    DuplicateReference,
    GatewayError,
    GatewayUnavailable,
    ReferenceNotFound,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.paystack.co"
DEFAULT_TIMEOUT = 15


def active_secret_key(conf: dict) -> str:
    """Pick the secret key for the configured mode (test key, or live key falling back to it)."""
    test_mode = bool(conf.get("TEST_MODE", True))
    key = conf.get("SECRET_KEY") if test_mode else (conf.get("LIVE_SECRET_KEY") or conf.get("SECRET_KEY"))
    if not key:
        mode = "test" if test_mode else "live"
        raise ConfigurationError(f"Paystack {mode} secret key not configured")
    if not str(key).startswith("sk_"):
        raise ConfigurationError("Paystack secret key must start with 'sk_'")
    if str(key).startswith("sk_test_") and not test_mode:
        logger.warning("Paystack test key configured while live mode is selected")
    elif str(key).startswith("sk_test_") and not settings.DEBUG:
        logger.warning("Using a Paystack test key with DEBUG off")
    return str(key)


def _is_not_found(status_code: int, data: dict) -> bool:
    code = str(data.get("code") or "").lower()
    message = str(data.get("message") or "").lower()
    return status_code == 404 or code == "transaction_not_found" or "not found" in message


def _is_duplicate_reference(data: dict) -> bool:
    code = str(data.get("code") or "").lower()
    message = str(data.get("message") or "").lower()
    return code == "duplicate_reference" or ("duplicate" in message and "reference" in message)


class PaystackClient:
    """Thin Paystack REST client. Amounts are integer minor units (kobo)."""

    def __init__(self, secret_key: str, *, base_url: str = DEFAULT_BASE_URL, timeout: float = DEFAULT_TIMEOUT, session=None):
        if not secret_key:
            raise ConfigurationError("Paystack secret key not configured")
        self.secret_key = secret_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, **kwargs):
        conf = getattr(settings, "PAYSTACK", None) or {}
        return cls(
            active_secret_key(conf),
            base_url=conf.get("BASE_URL", DEFAULT_BASE_URL),
            timeout=conf.get("TIMEOUT", DEFAULT_TIMEOUT),
            **kwargs,
        )

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except RequestException as e:
            raise GatewayUnavailable(f"Paystack request failed: {e}")
        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}
        if not isinstance(data, dict):
            data = {"raw": data}
        return resp.status_code, data

    def _raise_for(self, status_code: int, data: dict, action: str):
        detail = json.dumps(data)[:800]
        if status_code in (401, 403):
            raise ConfigurationError(f"Paystack rejected credentials ({status_code}) on {action}: {detail}")
        if status_code >= 500 or status_code == 429:
            raise GatewayUnavailable(f"Paystack {action} unavailable (HTTP {status_code}): {detail}")
        raise GatewayError(
            f"Paystack {action} failed (HTTP {status_code}): {data.get('message') or detail}",
            status=status_code,
            payload=data,
        )

    def initialize_transaction(self, *, email, amount, reference, callback_url=None, metadata=None,
                               currency="NGN", channels=None) -> dict:
        """POST /transaction/initialize -> ``{"authorization_url", "access_code", "reference"}``."""
        if not isinstance(amount, int):
            raise TypeError("amount must be an integer number of minor units")
        payload = {
            "email": email,
            "amount": str(amount),
            "currency": currency,
            "reference": reference,
            "metadata": json.dumps(metadata or {}),
        }
        if channels:
            payload["channels"] = list(channels)
        if callback_url:
            payload["callback_url"] = callback_url

        logger.info("Paystack initialize reference=%s amount=%s %s", reference, amount, currency)
        status_code, data = self._request("POST", "/transaction/initialize", json=payload)
        if status_code == 200 and data.get("status"):
            return data.get("data") or {}
        if status_code < 500 and _is_duplicate_reference(data):
            raise DuplicateReference(
                f"Paystack rejected duplicate reference {reference}: {data.get('message')}",
                status=status_code,
                payload=data,
            )
        if status_code == 200:
            raise GatewayError(data.get("message") or "Failed to initialize payment", status=status_code, payload=data)
        self._raise_for(status_code, data, "initialize")

    def verify_transaction(self, reference: str) -> dict:
        """GET /transaction/verify/<reference> -> the gateway's transaction ``data`` object."""
        if not reference:
            raise ReferenceNotFound("Payment reference is required")
        status_code, data = self._request("GET", f"/transaction/verify/{quote(reference, safe='')}")
        if status_code == 200 and data.get("status"):
            return data.get("data") or {}
        if status_code < 500 and _is_not_found(status_code, data):
            raise ReferenceNotFound(f"Paystack does not recognise reference {reference}")
        if status_code == 200:
            raise GatewayError(data.get("message") or "Failed to verify payment", status=status_code, payload=data)
        self._raise_for(status_code, data, "verify")
