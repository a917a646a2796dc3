"""Streaming relay: upstream line framing (framing.py) and the relay
generator plus its SSE endpoint (engine.py).
"""
