"""nudge - idle-aware scheduler for recurring personal reminders."""

__version__ = "0.1.0"
