"""Marketplace real-time messaging backend.

Packages:
    - auth: bearer token verification for sockets and HTTP routes
    - chat: presence, fan-out and the WebSocket event protocol
    - conversations: DuckDB-backed conversation/message store and HTTP API
"""
