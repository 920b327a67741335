"""Leaderboard sync for The Refuge Minecraft server."""

__version__ = "1.0.0"
