"""Database configuration and utilities.

``session`` binds the engine on import; the chat client only needs ``time``.
"""
