"""
story-relay: a Telegram bot that fetches stories from a catalog API, archives
them in a channel and relays them to the requesting user.
"""

__version__ = "0.1.0"
