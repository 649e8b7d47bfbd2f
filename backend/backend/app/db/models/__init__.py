from .common import *  # noqa
from .costing import *  # noqa
from .security_audit import *  # noqa

# Platform event-bus table (transactional outbox)
from app.events.outbox import *  # noqa
