"""HabitSync: habit streak engine and multi-device sync for the habit tracker."""

__version__ = "0.2.0"
