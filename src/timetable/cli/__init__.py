"""
CLI layer for timetable.

Terminal transport only: argument parsing, settings overrides and table
formatting. Scheduling logic lives in ``timetable.scheduling``.

Entry point::

    timetable --help
"""

from timetable.cli.app import app

__all__ = ["app"]
