"""
Quantization Job Core

Job-processing core of a model-quantization service: admission by credits,
a tiered priority queue, a bounded worker pool, the job lifecycle state
machine and a stuck-job monitor.
"""

__version__ = "1.0.0"
