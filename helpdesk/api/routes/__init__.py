from . import direct_messages, realtime

__all__ = [
    "direct_messages",
    "realtime",
]
