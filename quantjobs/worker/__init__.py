"""
Worker module.
Contains the bounded worker pool that executes quantization jobs.
"""

from quantjobs.worker.pool import InFlightSet, WorkerPool

__all__ = ["InFlightSet", "WorkerPool"]
