"""Weekly Linear status reports delivered to Slack."""

__version__ = "0.1.0"
