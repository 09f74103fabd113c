# Models package: import all models here so Alembic can discover them.

from app.models.user import User  # noqa: F401
from app.models.product import Product  # noqa: F401
from app.models.order import Order, OrderLineItem  # noqa: F401
from app.models.entitlement import Entitlement  # noqa: F401
from app.models.inbound_event import InboundEvent  # noqa: F401
from app.models.audit import AuditEvent  # noqa: F401
from app.models.email_log import EmailLog  # noqa: F401
