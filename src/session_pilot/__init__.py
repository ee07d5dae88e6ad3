"""Session planning: scan a workspace for signals and turn them into a time-boxed task list."""

__version__ = "0.1.0"
