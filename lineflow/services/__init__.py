from lineflow.services.contact_service import (
    follow_contact,
    get_or_create_contact,
    unfollow_contact,
)
from lineflow.services.delivery_state import (
    DeliveryStatus,
    InvalidTransitionError,
    can_transition,
    cancel,
    complete,
    fail,
    transition,
)
from lineflow.services.message_service import (
    get_recent_messages,
    save_message,
)
