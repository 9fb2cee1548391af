# Models package — import all models here so Alembic can discover them.

from groupcollect.models.event import Event  # noqa: F401
from groupcollect.models.payment import Payment  # noqa: F401
from groupcollect.models.admin_token import AdminToken  # noqa: F401
from groupcollect.models.audit import AdminActionLog  # noqa: F401
from groupcollect.models.stripe_event import StripeWebhookEvent  # noqa: F401
