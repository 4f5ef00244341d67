from .time_utils import get_current_timestamp
from .ring_buffer import RingBuffer
from .subjects import resolve_subject, has_placeholder
from .validation import validate_subject, GUID_PLACEHOLDER

__all__ = [
    "get_current_timestamp",
    "RingBuffer",
    "resolve_subject",
    "has_placeholder",
    "validate_subject",
    "GUID_PLACEHOLDER",
]
