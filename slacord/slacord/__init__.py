"""Slack to Discord relay with a searchable message archive."""

__version__ = "0.1.0"
