"""mdreader - plugin communication layer for MD Reader Pro."""

__version__ = "0.1.0"
__logo__ = "📖"
