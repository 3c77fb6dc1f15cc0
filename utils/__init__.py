"""Utility modules for cross-cutting concerns."""

from utils.timezone import Clock, now_utc, fixed_clock, to_utc, parse_iso
from utils.user_context import (
    get_current_user_id,
    peek_current_user_id,
    set_current_user_id,
    reset_current_user_id,
    clear_current_user_id,
    user_context,
)
from utils.money import apply_rate, format_cents
