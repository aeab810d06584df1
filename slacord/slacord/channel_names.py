from __future__ import annotations

import re

SLACK_NAME_LIMIT = 80
DISCORD_NAME_LIMIT = 100
SLACK_TOPIC_LIMIT = 250
DISCORD_TOPIC_LIMIT = 1024

# Common Korean team vocabulary; channel names on both platforms only accept
# lower case ASCII letters, digits, hyphens and underscores.
KOREAN_TO_ROMAN: dict[str, str] = {
    "개발": "dev",
    "팀": "team",
    "마케팅": "marketing",
    "영업": "sales",
    "디자인": "design",
    "기획": "planning",
    "인사": "hr",
    "총무": "admin",
    "재무": "finance",
    "관리": "management",
    "프로젝트": "project",
    "운영": "operation",
    "지원": "support",
    "고객": "customer",
    "서비스": "service",
}

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9\-_]")
_EDGE_HYPHENS = re.compile(r"^-+|-+$")


def korean_to_roman(text: str) -> str:
    for korean, roman in KOREAN_TO_ROMAN.items():
        text = text.replace(korean, roman)
    return text


def sanitize_channel_name(name: str, limit: int = SLACK_NAME_LIMIT) -> str:
    """Return a channel name acceptable to both Slack and Discord.

    >>> sanitize_channel_name("개발 팀")
    'dev-team'
    """

    processed = korean_to_roman(name).lower()
    processed = _WHITESPACE.sub("-", processed)
    processed = _DISALLOWED.sub("", processed)
    processed = _EDGE_HYPHENS.sub("", processed)
    return processed[:limit] or "channel"
