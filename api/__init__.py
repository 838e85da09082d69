"""
NERON API - Starlette HTTP and WebSocket surface over the interaction engine.
"""
