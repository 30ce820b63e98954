"""
Payments module: signed gateway client, callback verification and the
order/payment state machine.
"""

from .signing import CallbackVerifier, generate_signature, sign_payload
from .gateway import PaymentGatewayClient, format_phone_number
from .order_state import OrderStatus, PaymentStatus
from .order_store import OrderStore
from .order_service import OrderService
from .webhook import create_webhook_app

__all__ = [
    'CallbackVerifier',
    'generate_signature',
    'sign_payload',
    'PaymentGatewayClient',
    'format_phone_number',
    'OrderStatus',
    'PaymentStatus',
    'OrderStore',
    'OrderService',
    'create_webhook_app',
]
