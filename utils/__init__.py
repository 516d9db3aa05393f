"""
Utils package for the FabLab inventory and scheduling dashboard
"""

from .database_handler import DatabaseHandler, NotFoundError
from .models import (
    db,
    Profile,
    Material,
    Trainer,
    School,
    Activity,
    Movement,
    Consumption,
    ACTIVITY_STATES,
    MOVEMENT_TYPES,
    ROLES,
)
from .helpers import (
    generate_qr_code,
    is_below_threshold,
    top_trainers,
    filter_activities_by_date,
    parse_date,
    parse_time,
    parse_quantity,
    format_timestamp,
    serialize_timestamps,
    validate_email,
    validate_record_id,
    clean_text,
    mask_email,
    format_date_it,
)
from .auth import login_required, role_required, current_user_id

__all__ = [
    "DatabaseHandler",
    "NotFoundError",
    "db",
    "Profile",
    "Material",
    "Trainer",
    "School",
    "Activity",
    "Movement",
    "Consumption",
    "ACTIVITY_STATES",
    "MOVEMENT_TYPES",
    "ROLES",
    "generate_qr_code",
    "is_below_threshold",
    "top_trainers",
    "filter_activities_by_date",
    "parse_date",
    "parse_time",
    "parse_quantity",
    "format_timestamp",
    "serialize_timestamps",
    "validate_email",
    "validate_record_id",
    "clean_text",
    "mask_email",
    "format_date_it",
    "login_required",
    "role_required",
    "current_user_id",
]
