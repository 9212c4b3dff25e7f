"""HTTP server, settings store and event bus for tubeloop."""
