"""
Realtime app: per-table change feed over WebSockets.

This app provides:
- Model signal handlers that publish insert/update/delete events to the
  channel layer once the surrounding transaction commits
- FeedConsumer, which lets a client subscribe to tables and forwards only
  the rows that client may see
- JWT querystring authentication middleware for WebSocket connections

Key Components:
    - feed.py: signal wiring and event publishing
    - consumers/: WebSocket consumers (base, feed)
    - middleware.py: WebSocket authentication

Usage:
    from realtime.feed import publish_change, feed_group
    from realtime.consumers import FeedConsumer
"""
