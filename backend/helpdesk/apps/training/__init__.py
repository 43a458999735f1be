"""
Training module.

Assignments, step progress, completion rules and the training audit trail.
"""
