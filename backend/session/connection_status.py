"""
Connection status tracking for the audio channel.

connection_status: DOWN | CONNECTING | UP

Pure data owned by AudioGateway, independent of capture or stream state.
"""
from enum import Enum

class ConnectionStatus(Enum):
    """
    Channel lifecycle status.

    A stream can only be received and a capture can only send while UP.
    """
    DOWN = "DOWN"              # Not connected
    CONNECTING = "CONNECTING"  # Handshake in progress
    UP = "UP"                  # Active WebSocket connection
