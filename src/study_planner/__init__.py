"""Study planner: places study sessions for deadline-bound tasks on a calendar."""

__version__ = "0.1.0"
