"""Real-time messaging core.

Modules:
    - presence: user -> live connection handles, online/offline edges
    - connection: per-connection state machine
    - directory: conversation membership gate
    - pipeline: sendMessage / typing / markRead write path
    - broadcast: multi-device and participant fan-out
    - events: wire protocol names and payloads
    - router: the /ws/messages endpoint
"""
