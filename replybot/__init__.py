"""
replybot - automated chat auto-responder.
"""

__version__ = "0.1.0"
__logo__ = "💬"
