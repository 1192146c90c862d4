"""WebSocket layer: connections, Redis-backed fan-out, clock event handling."""
