"""calmirror - one-way mirroring of a source calendar onto target calendars."""

__version__ = "1.0.0"
