# API Routes Module
from paywall.api.routes import (
    subscriptions,
    trial,
    webhooks,
)

__all__ = [
    "subscriptions",
    "trial",
    "webhooks",
]
