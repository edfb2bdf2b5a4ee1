"""
ntfy.sh TV notification feed

Keeps a persistent WebSocket subscription to an ntfy relay, stores the most
recent messages per topic, and hands them to the notification layer.
"""

__version__ = "0.1.0"
