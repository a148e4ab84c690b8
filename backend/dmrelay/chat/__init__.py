"""Direct-message sessions and the WebSocket transport."""
