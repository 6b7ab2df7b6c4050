"""Socket.IO bridge namespace handlers.

Namespace: /bridge

The game-server plugin connects here (auth payload { token }) to receive a
`refresh_commands` event whenever rolls enqueue commands, so it can poll
GET /bridge/commands immediately instead of waiting for its next interval.

Events:
    - connect: rejected unless auth.token matches BRIDGE_TOKEN
Emits:
    - refresh_commands: {}  (from DispatchQueue.notify_bridge)
"""

import hmac
import time

from flask import current_app, request

from gacha import socketio
from gacha.logging_utils import get_logger
from gacha.services.dispatch import BRIDGE_NAMESPACE

_log = get_logger("gacha.bridge")

# sid -> connect timestamp, for admin diagnostics
connected = {}


@socketio.on("connect", namespace=BRIDGE_NAMESPACE)
def handle_connect(auth=None):
    expected = current_app.config.get("BRIDGE_TOKEN")
    supplied = (auth or {}).get("token") if isinstance(auth, dict) else None
    if not expected or not supplied or not hmac.compare_digest(str(supplied), str(expected)):
        _log.warn(event="bridge_connect_rejected", sid=request.sid)
        return False
    connected[request.sid] = time.time()
    _log.info(event="bridge_connected", sid=request.sid, bridges=len(connected))
    return True


@socketio.on("disconnect", namespace=BRIDGE_NAMESPACE)
def handle_disconnect(*args):
    connected.pop(request.sid, None)
    _log.info(event="bridge_disconnected", sid=request.sid, bridges=len(connected))
