"""Obra Hub: project, task, expense and finance tracking for construction work."""
