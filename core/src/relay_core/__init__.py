"""relay-core: real-time chat broadcast relay over WebSocket."""
