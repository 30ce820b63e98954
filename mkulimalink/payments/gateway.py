"""
gateway.py - Mobile-money payment gateway client.

Every request is signed (see signing.py) and sent through one
requests.Session whose transport retries connection errors, read
timeouts and 5xx responses. 4xx responses are returned immediately.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import (
    CHECK_STATUS_ENDPOINT,
    INITIATE_PAYMENT_ENDPOINT,
    REFUND_ENDPOINT,
    GatewayConfig,
)
from ..errors import GatewayRejected, GatewayUnreachable, ValidationError
from .signing import sign_payload

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("PaymentGateway")

PAYMENT_METHODS = {
    'tigopesa': 'TigoPesa',
    'halopesa': 'HaloPesa',
    'airtel_money': 'Airtel Money',
}

RETRY_STATUSES = (500, 502, 503, 504)
LOCAL_NUMBER_LENGTH = 9


def format_phone_number(phone, country_code: str = "255") -> str:
    """
    Normalise a subscriber number to +<country code><local number>.

    "0712345678", "255712345678" and "712345678" all become "+255712345678".
    """
    cleaned = re.sub(r'\D', '', str(phone or ''))
    if not cleaned:
        raise ValidationError(f"Invalid phone number: {phone!r}")

    if cleaned.startswith(country_code) and len(cleaned) == len(country_code) + LOCAL_NUMBER_LENGTH:
        return f"+{cleaned}"
    if cleaned.startswith('0') and len(cleaned) == 1 + LOCAL_NUMBER_LENGTH:
        return f"+{country_code}{cleaned[1:]}"
    if len(cleaned) == LOCAL_NUMBER_LENGTH:
        return f"+{country_code}{cleaned}"

    raise ValidationError(f"Unrecognised phone number format: {phone!r}")


def get_payment_method_label(method: str) -> str:
    return PAYMENT_METHODS.get(method, method)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class PaymentGatewayClient:
    """Signed client for payment initiation, status checks and refunds."""

    def __init__(self, config: GatewayConfig, session: Optional[requests.Session] = None):
        if not config.api_key:
            raise ValidationError("Gateway API key is not configured")
        self.config = config
        self.session = session or self._build_session()

    def _build_session(self) -> requests.Session:
        retry = Retry(
            total=self.config.max_retries,
            connect=self.config.max_retries,
            read=self.config.max_retries,
            status=self.config.max_retries,
            backoff_factor=self.config.retry_backoff,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=frozenset(["POST"]),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)

        session = requests.Session()
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'Authorization': f'Bearer {self.config.api_key}',
        })
        return session

    def _post(self, endpoint: str, payload: Dict[str, Any], operation: str) -> Dict[str, Any]:
        url = f"{self.config.base_url}{endpoint}"
        signed = sign_payload(payload, self.config.api_key)

        try:
            response = self.session.post(url, json=signed, timeout=self.config.timeout)
        except (requests.exceptions.ConnectionError,
                requests.exceptions.Timeout,
                requests.exceptions.RetryError) as e:
            logger.error(f"{operation} could not reach gateway: {e}")
            raise GatewayUnreachable(f"{operation} failed: {e}") from e

        message = self._extract_message(response)
        if response.status_code >= 500:
            logger.error(f"{operation} gateway error HTTP {response.status_code}: {message}")
            raise GatewayUnreachable(f"{operation} failed: {message}", status=response.status_code)
        if response.status_code >= 400:
            logger.warning(f"{operation} rejected HTTP {response.status_code}: {message}")
            raise GatewayRejected(f"{operation} rejected: {message}", status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise GatewayRejected(
                f"{operation} returned a non-JSON response", status=response.status_code
            ) from e

    @staticmethod
    def _extract_message(response) -> str:
        try:
            data = response.json()
            if isinstance(data, dict) and data.get('message'):
                return str(data['message'])
        except ValueError:
            pass
        return response.text or f"HTTP {response.status_code}"

    # ==================== Gateway Operations ====================

    def initiate_payment(
        self,
        amount,
        phone_number: str,
        payment_method: str,
        order_id: str,
        description: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Start a mobile-money push payment.

        Raises:
            ValidationError: a required field is missing or malformed
            GatewayUnreachable: network failure, timeout or 5xx after retries
            GatewayRejected: the gateway refused the request
        """
        missing = [
            name for name, value in (
                ('amount', amount),
                ('phone_number', phone_number),
                ('payment_method', payment_method),
                ('order_id', order_id),
            ) if not value
        ]
        if missing:
            raise ValidationError(f"Missing required payment fields: {', '.join(missing)}")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method: {payment_method}")

        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValidationError(f"Amount must be a number: {amount!r}")
        rounded = int(round(amount))
        if rounded <= 0:
            raise ValidationError(f"Amount must be positive: {amount}")

        payload = {
            'client_id': self.config.client_id,
            'amount': rounded,
            'phone_number': format_phone_number(phone_number, self.config.country_code),
            'payment_method': payment_method,
            'order_id': str(order_id),
            'description': description or 'MkulimaLink Purchase',
            'timestamp': _timestamp(),
        }
        if callback_url:
            payload['callback_url'] = callback_url

        logger.info(f"Initiating {get_payment_method_label(payment_method)} payment for order {order_id}")
        data = self._post(INITIATE_PAYMENT_ENDPOINT, payload, "Payment initiation")
        return {
            'success': True,
            'transaction_id': data.get('transaction_id'),
            'status': data.get('status'),
            'message': data.get('message'),
        }

    def check_payment_status(self, transaction_id: str) -> Dict[str, Any]:
        if not transaction_id:
            raise ValidationError("transaction_id is required")

        payload = {
            'client_id': self.config.client_id,
            'transaction_id': transaction_id,
            'timestamp': _timestamp(),
        }
        data = self._post(CHECK_STATUS_ENDPOINT, payload, "Status check")
        return {
            'transaction_id': data.get('transaction_id', transaction_id),
            'status': data.get('status'),
            'amount': data.get('amount'),
            'phone_number': data.get('phone_number'),
            'timestamp': data.get('timestamp'),
        }

    def process_refund(self, transaction_id: str, amount, reason: Optional[str] = None) -> Dict[str, Any]:
        if not transaction_id:
            raise ValidationError("transaction_id is required")
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or int(round(amount)) <= 0:
            raise ValidationError(f"Refund amount must be positive: {amount}")

        payload = {
            'client_id': self.config.client_id,
            'transaction_id': transaction_id,
            'amount': int(round(amount)),
            'reason': reason or 'Customer request',
            'timestamp': _timestamp(),
        }
        logger.info(f"Refunding {payload['amount']} on transaction {transaction_id}")
        data = self._post(REFUND_ENDPOINT, payload, "Refund processing")
        return {
            'success': True,
            'refund_id': data.get('refund_id'),
            'status': data.get('status'),
            'message': data.get('message'),
        }
