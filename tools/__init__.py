"""Command-line tools for the climate twin device."""
