"""Performance metrics: request-path collector, resource sampler, exposition."""

from .collector import CacheOperation, EndpointMetrics, MetricsCollector
from .exposition import CONTENT_TYPE, render_prometheus
from .percentiles import SlidingWindow, percentile, percentiles
from .resources import ResourceSampler, SystemHealth, SystemMetrics
