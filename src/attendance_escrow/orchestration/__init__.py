"""Orchestration layer — periodic sweeps and event consumers."""

from attendance_escrow.orchestration.background import BackgroundJobs

__all__ = ["BackgroundJobs"]
