"""WebSocket push."""
