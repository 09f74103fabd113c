"""Exceptions raised by the fulfillment engine.

NonRetryableEventError subclasses mean the payload itself is bad (or refers
to something that doesn't exist). Redelivering the same event can never
succeed, so the webhook layer acknowledges it and parks it in the
dead-letter list instead of asking Stripe to retry.
"""


class FulfillmentError(Exception):
    """Base class for engine errors."""


class NonRetryableEventError(FulfillmentError):
    """The event can't be processed no matter how often it is redelivered."""


class MalformedEventError(NonRetryableEventError):
    """Missing required metadata or customer email on a checkout session."""


class ProductNotFoundError(NonRetryableEventError):
    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class ProductUnavailableError(NonRetryableEventError):
    """The product exists but is retired from sale (is_active=False)."""

    def __init__(self, product_id):
        super().__init__(f"Product {product_id} is not active")
        self.product_id = product_id


class UserNotFoundError(NonRetryableEventError):
    def __init__(self, user_id):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class EventNotFoundError(FulfillmentError):
    def __init__(self, provider_event_id):
        super().__init__(f"Event not found: {provider_event_id}")
        self.provider_event_id = provider_event_id


class EventAlreadyProcessedError(FulfillmentError):
    def __init__(self, provider_event_id):
        super().__init__(f"Event already processed: {provider_event_id}")
        self.provider_event_id = provider_event_id
