"""
Stuck-job monitor.
Force-fails PROCESSING jobs whose worker stopped reporting.
"""

from quantjobs.monitor.main import StuckJobMonitor

__all__ = ["StuckJobMonitor"]
