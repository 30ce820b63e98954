"""
actions.py - Queued action types and their remote routes.

Each action type maps to exactly one (verb, path) pair on the
marketplace API. The table is a plain dict so the set of known
actions can be listed and extended at runtime.
"""

import uuid
from enum import Enum
from typing import Any, Callable, Dict

from ..errors import ValidationError


class ActionType(Enum):
    CREATE_PRODUCT = "CREATE_PRODUCT"
    UPDATE_PRODUCT = "UPDATE_PRODUCT"
    CREATE_TRANSACTION = "CREATE_TRANSACTION"


class ActionRoute:
    """How one action type is replayed against the API."""

    def __init__(self, verb: str, path: Callable[[Dict], str], creates: bool = False):
        if verb not in ("post", "put"):
            raise ValueError(f"Unsupported verb: {verb}")
        self.verb = verb
        self.path = path
        # Create-type payloads get an idempotency_key
        self.creates = creates


def _product_path(payload: Dict) -> str:
    product_id = payload.get('id')
    if not product_id:
        raise ValidationError("UPDATE_PRODUCT payload requires 'id'")
    return f"/products/{product_id}"


ACTION_ROUTES: Dict[str, ActionRoute] = {
    ActionType.CREATE_PRODUCT.value: ActionRoute("post", lambda payload: "/products", creates=True),
    ActionType.UPDATE_PRODUCT.value: ActionRoute("put", _product_path),
    ActionType.CREATE_TRANSACTION.value: ActionRoute("post", lambda payload: "/transactions", creates=True),
}


def action_type_name(action_type) -> str:
    return action_type.value if isinstance(action_type, ActionType) else str(action_type)


def prepare_payload(route: ActionRoute, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate the payload for its route and attach an idempotency key to creates."""
    if not isinstance(payload, dict):
        raise ValidationError("Action payload must be an object")
    route.path(payload)
    if route.creates and not payload.get('idempotency_key'):
        payload = {**payload, 'idempotency_key': str(uuid.uuid4())}
    return payload


async def dispatch_action(api, route: ActionRoute, payload: Dict[str, Any]) -> Any:
    """Send one action through the API client's post/put."""
    send = getattr(api, route.verb)
    return await send(route.path(payload), payload)
