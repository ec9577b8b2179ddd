"""tracksync - resolve tracks to playable streams across debrid and scraping sources."""

__version__ = "0.3.0"
