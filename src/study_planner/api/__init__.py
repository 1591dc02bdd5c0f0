"""HTTP host for the study planner."""
