"""Orchestration layer — server-side deadline enforcement."""

from resale_escrow.orchestration.deadline_sweep import DeadlineSweep, SweepSummary

__all__ = ["DeadlineSweep", "SweepSummary"]
