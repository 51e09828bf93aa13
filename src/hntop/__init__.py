"""hntop: ranked Hacker News story lists backed by SQLite and two cache tiers."""

__version__ = "0.1.0"
