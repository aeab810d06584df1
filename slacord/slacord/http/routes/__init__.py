from . import (
    mappings,
    messages,
    ping,
    slack_events,
    teams,
    users,
)

__all__ = [
    "mappings",
    "messages",
    "ping",
    "slack_events",
    "teams",
    "users",
]
