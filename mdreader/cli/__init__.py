"""CLI module for mdreader."""
