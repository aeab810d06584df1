"""Slack to Discord relay pipeline."""
