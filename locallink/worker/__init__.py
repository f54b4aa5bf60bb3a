"""Background workers."""

from .acceptance_recovery import AcceptanceRecoveryWorker

__all__ = ["AcceptanceRecoveryWorker"]
