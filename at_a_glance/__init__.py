"""At A Glance: a contextual status line built from calendar, tasks, weather and system state."""

__version__ = "0.3.0"
