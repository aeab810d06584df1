"""Slack gateway used by the relay and the HTTP routes."""
