"""
Payment Webhook App - Inbound gateway callbacks

Verifies each callback's signature before anything touches the order.
A forged or malformed callback gets 401 and causes no side effects.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..errors import ConcurrentUpdateError, OrderNotFound, ValidationError
from .order_service import OrderService
from .signing import CallbackVerifier

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("PaymentWebhook")


def create_webhook_app(verifier: CallbackVerifier, order_service: OrderService) -> FastAPI:
    app = FastAPI(title="MkulimaLink Payment Webhook")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/payments/callback")
    async def payment_callback(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            logger.warning("Callback body is not JSON")
            return JSONResponse({"status": "rejected", "reason": "invalid_body"}, status_code=401)

        if not verifier.verify(payload):
            return JSONResponse({"status": "rejected", "reason": "invalid_signature"}, status_code=401)

        try:
            result = order_service.apply_payment_callback(payload)
        except OrderNotFound as e:
            return JSONResponse({"status": "error", "reason": str(e)}, status_code=404)
        except ValidationError as e:
            logger.warning(f"Callback for order {payload.get('order_id')} refused: {e}")
            return JSONResponse({"status": "error", "reason": str(e)}, status_code=400)
        except ConcurrentUpdateError as e:
            # The gateway retries callbacks on non-2xx
            logger.error(str(e))
            return JSONResponse({"status": "error", "reason": "busy"}, status_code=503)

        order = result["order"]
        return {
            "status": "ok",
            "applied": result["applied"],
            "order_id": order["id"],
            "payment_status": order["payment_status"],
        }

    return app
