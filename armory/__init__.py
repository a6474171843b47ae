"""Cached, rate-limited access to the game data API."""
