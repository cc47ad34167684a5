"""lima: a library of project folders tracked in SQLite."""

__version__ = "0.1.0"
