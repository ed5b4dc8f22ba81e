"""Punch the Clock: task-based time tracking.

Tracks work time against tasks with start/pause/resume/stop signals and
derives time, velocity and estimation-accuracy reports from the stored
session history.
"""

__version__ = "0.1.0"
