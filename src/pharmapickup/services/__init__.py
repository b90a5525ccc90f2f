"""Pickup service business logic.

- transitions: state graph and transition validation
- lifecycle: create, transition, cancel, complete and reads
- store: persistence access and error translation
- events: lifecycle event dispatch and subscribers
- stats: pharmacy dashboard aggregation
"""

from pharmapickup.services.errors import (
    ConflictError,
    ForbiddenTransitionError,
    InvalidInputError,
    InvalidTransitionError,
    PickupError,
    RequestNotFoundError,
    StoreUnavailableError,
)
from pharmapickup.services.events import (
    LifecycleEvent,
    LifecycleEventDispatcher,
    WebhookEventSubscriber,
    build_dispatcher,
    log_lifecycle_event,
)
from pharmapickup.services.lifecycle import NewLineItem, PickupLifecycleService
from pharmapickup.services.stats import PharmacyStats, PharmacyStatsService
from pharmapickup.services.transitions import (
    TRANSITION_GRAPH,
    LineItemPrice,
    TransitionPayload,
    is_terminal,
    validate,
)

__all__ = [
    "TRANSITION_GRAPH",
    "ConflictError",
    "ForbiddenTransitionError",
    "InvalidInputError",
    "InvalidTransitionError",
    "LifecycleEvent",
    "LifecycleEventDispatcher",
    "LineItemPrice",
    "NewLineItem",
    "PharmacyStats",
    "PharmacyStatsService",
    "PickupError",
    "PickupLifecycleService",
    "RequestNotFoundError",
    "StoreUnavailableError",
    "TransitionPayload",
    "WebhookEventSubscriber",
    "build_dispatcher",
    "is_terminal",
    "validate",
    "log_lifecycle_event",
]
