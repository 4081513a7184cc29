"""WebSocket endpoint for real-time conversation messaging.

This module provides:
    - WebSocket /ws/messages: authenticated, multi-device messaging session

Connection lifecycle (see connection.ConnectionState):
    1. Handshake carries a bearer token (?token=... or Authorization header)
       → if the token is missing or invalid: accept, send
         {type: "error", error, code}, close with 1008 and the same reason
    2. Connection registered in the presence registry
       → {type: "userOnline", userId} to every connection on the user's
         first connection
       → {type: "onlineUsers", userIds: [...]} to the new connection
    3. Inbound frames dispatched by ``type`` (sendMessage, typing, markRead)
    4. On disconnect the handle is removed exactly once
       → {type: "userOffline", userId} to every connection when the user's
         last connection closes

One bad frame never closes the connection: sendMessage always gets an ack,
typing/markRead failures are logged only.
"""
import json
import logging
from typing import Any, Awaitable, Callable, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError as PayloadError

from marketchat.auth.service import get_verifier, token_from_handshake
from marketchat.errors import (
    AuthenticationError,
    ChatError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)

from .broadcast import broadcaster
from .connection import Connection, ConnectionState
from .events import (
    ClientEvent,
    MarkReadPayload,
    SendMessageAck,
    SendMessagePayload,
    ServerEvent,
    TypingPayload,
    coerce_request_id,
)
from .pipeline import get_pipeline
from .presence import PresenceTransition, registry

logger = logging.getLogger(__name__)

router = APIRouter()

GENERIC_SEND_FAILURE = "Failed to send message"
NOT_AN_OBJECT = "Frame must be a JSON object"


@router.websocket("/ws/messages")
async def messaging_websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint handling one client session from handshake to close.

    Args:
        websocket: The WebSocket connection.
    """
    connection = Connection(websocket)

    # --- Gatekeeper: verify before any handler is bound ---
    token = token_from_handshake(websocket.query_params, websocket.headers)
    try:
        user_id = get_verifier().verify(token)
    except AuthenticationError as e:
        if e.code == AuthenticationError.TOKEN_MISSING:
            logger.warning("[WS] Handshake rejected: token missing")
        else:
            logger.warning(f"[WS] Handshake rejected: token invalid ({e.detail})")
        await _reject(connection, e)
        return

    await websocket.accept()
    connection.authenticate(user_id)
    logger.info(f"[WS] Connection {connection.id} authenticated as user {user_id}")

    try:
        await _join(connection)

        # Main message loop
        while connection.is_open:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            raw = message.get("text")
            if raw is None:
                await connection.send(ServerEvent.ERROR.value, {"error": NOT_AN_OBJECT})
                continue
            await _dispatch(connection, raw)

    except WebSocketDisconnect:
        logger.info(f"[WS] Connection {connection.id} of user {user_id} disconnected")
    finally:
        await _leave(connection)


async def _reject(connection: Connection, error: AuthenticationError) -> None:
    """Refuse a session: error frame, then close 1008 with the reason.

    Accepted first: a close before accept() surfaces as a bare HTTP 403
    without the reason.
    """
    websocket = connection.websocket
    await websocket.accept()
    await connection.send(ServerEvent.ERROR.value, {"error": error.message, "code": error.code})
    connection.close()
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=error.message)


async def _join(connection: Connection) -> None:
    """Register presence and deliver the online snapshot (AUTHENTICATED → ACTIVE)."""
    transition = registry.register_connection(connection.user_id, connection)
    connection.transition(ConnectionState.JOINED)

    if transition is PresenceTransition.ONLINE:
        await broadcaster.broadcast_all(
            ServerEvent.USER_ONLINE.value, {"userId": connection.user_id}
        )

    await connection.send(
        ServerEvent.ONLINE_USERS.value, {"userIds": sorted(registry.list_online())}
    )
    connection.transition(ConnectionState.ACTIVE)


async def _leave(connection: Connection) -> None:
    """Move to DISCONNECTED and drop the handle from presence exactly once."""
    if not connection.close():
        return
    transition = registry.remove_connection(connection.user_id, connection)
    if transition is PresenceTransition.OFFLINE:
        logger.info(f"[WS] User {connection.user_id} is now offline")
        await broadcaster.broadcast_all(
            ServerEvent.USER_OFFLINE.value, {"userId": connection.user_id}
        )


async def _dispatch(connection: Connection, raw: str) -> None:
    """Route one inbound frame to its handler."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        await connection.send(ServerEvent.ERROR.value, {"error": "Invalid JSON frame"})
        return
    if not isinstance(data, dict):
        await connection.send(ServerEvent.ERROR.value, {"error": NOT_AN_OBJECT})
        return

    event_type = data.get("type")
    logger.debug("[WS] %s received: type=%s", connection.id, event_type)

    handler = _HANDLERS.get(event_type) if isinstance(event_type, str) else None
    if handler is None:
        await connection.send(
            ServerEvent.ERROR.value, {"error": f"Unknown event type: {event_type}"}
        )
        return
    await handler(connection, data)


async def _handle_send_message(connection: Connection, data: Dict[str, Any]) -> None:
    try:
        request_id = coerce_request_id(data.get("requestId"))
    except ValueError as e:
        ack = SendMessageAck.failed(str(e))
        await connection.send(ServerEvent.ACK.value, ack.to_payload())
        return

    try:
        payload = SendMessagePayload.model_validate(data)
        message = await get_pipeline().send_message(
            payload.conversationId, connection.user_id, payload.content, origin=connection
        )
        ack = SendMessageAck.ok(message, request_id)
    except PayloadError:
        ack = SendMessageAck.failed("conversationId and content are required", request_id)
    except (ValidationError, NotFoundError) as e:
        ack = SendMessageAck.failed(e.message, request_id)
    except PersistenceError as e:
        logger.error(f"[WS] sendMessage from {connection.user_id} failed: {e.detail or e.message}")
        ack = SendMessageAck.failed(GENERIC_SEND_FAILURE, request_id)
    except Exception:
        logger.exception(f"[WS] sendMessage from {connection.user_id} failed unexpectedly")
        ack = SendMessageAck.failed(GENERIC_SEND_FAILURE, request_id)

    await connection.send(ServerEvent.ACK.value, ack.to_payload())


async def _handle_typing(connection: Connection, data: Dict[str, Any]) -> None:
    try:
        payload = TypingPayload.model_validate(data)
        await get_pipeline().set_typing(payload.conversationId, connection.user_id, payload.isTyping)
    except PayloadError:
        logger.debug(f"[WS] Dropping malformed typing frame from {connection.user_id}")
    except ChatError as e:
        logger.warning(f"[WS] typing from {connection.user_id} failed: {e.message}")


async def _handle_mark_read(connection: Connection, data: Dict[str, Any]) -> None:
    try:
        payload = MarkReadPayload.model_validate(data)
        await get_pipeline().mark_read(payload.conversationId, connection.user_id)
    except PayloadError:
        logger.debug(f"[WS] Dropping malformed markRead frame from {connection.user_id}")
    except NotFoundError:
        logger.debug(f"[WS] Dropping markRead from non-participant {connection.user_id}")
    except ChatError as e:
        logger.warning(f"[WS] markRead from {connection.user_id} failed: {e.message}")


_HANDLERS: Dict[str, Callable[[Connection, Dict[str, Any]], Awaitable[None]]] = {
    ClientEvent.SEND_MESSAGE.value: _handle_send_message,
    ClientEvent.TYPING.value: _handle_typing,
    ClientEvent.MARK_READ.value: _handle_mark_read,
}
