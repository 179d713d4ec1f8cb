"""
timetable - database-resident chain scheduler.

A scheduler process takes an exclusive identity (client name) in a
relational store, repairs runs a crashed predecessor left behind, and
then starts due chains of SQL, shell and built-in tasks, recording every
step back into the same store.

Packages:
- timetable.core: errors, logging, settings, store access
- timetable.scheduling: identity, crash recovery, admission, tick loop
- timetable.execution: chain executor, retry, task runners, subprocesses
- timetable.cli: the ``timetable`` command
"""

__version__ = "0.1.0"
