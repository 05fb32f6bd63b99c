from app.models.base import Base  # noqa: F401

from app.models.delivery import DeliveryRow  # noqa: F401
from app.models.courier import CourierRow  # noqa: F401
from app.models.webhook import WebhookSubscriptionRow, WebhookAttemptRow  # noqa: F401
