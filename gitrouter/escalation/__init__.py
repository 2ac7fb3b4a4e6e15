"""Time-driven reminder and escalation of pending reviews."""

from gitrouter.escalation.scheduler import EscalationScheduler, SweepStats, start_scheduler_thread

__all__ = ["EscalationScheduler", "SweepStats", "start_scheduler_thread"]
