"""
Monitoring package for the Dishola search service.
"""
from .metrics_collector import SearchMetrics, MetricPoint

__all__ = [
    'SearchMetrics',
    'MetricPoint'
]
