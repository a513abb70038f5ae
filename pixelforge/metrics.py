"""
Prometheus metrics for the PixelForge worker.
Exposes per-image outcomes, pipeline step timings and detection counts.
"""
from prometheus_client import Counter, Histogram, Info, start_http_server
import logging

logger = logging.getLogger(__name__)

# Info metrics
worker_info = Info('pixelforge_worker', 'Worker information')

# Image metrics
images_processed_total = Counter(
    'pixelforge_images_processed_total',
    'Total images processed',
    ['status']  # completed, failed, cancelled
)
processing_duration_seconds = Histogram(
    'pixelforge_processing_duration_seconds',
    'Whole-pipeline duration per image',
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60]
)
step_duration_seconds = Histogram(
    'pixelforge_step_duration_seconds',
    'Duration of a single pipeline step',
    ['step'],  # resize, background, watermark
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30]
)

# Watermark metrics
watermark_regions_detected = Counter(
    'pixelforge_watermark_regions_detected_total',
    'Watermark regions found by auto-detection'
)

_server_port = None


def record_image_processed(status: str, duration: float | None = None):
    """Record one image outcome, and its duration when it ran."""
    images_processed_total.labels(status=status).inc()
    if duration is not None:
        processing_duration_seconds.observe(duration)


def record_step_duration(step: str, duration: float):
    """Record how long one pipeline step took."""
    step_duration_seconds.labels(step=step).observe(duration)


def record_regions_detected(count: int):
    """Record auto-detected watermark regions."""
    if count > 0:
        watermark_regions_detected.inc(count)


def start_metrics_server(port: int = 9090, worker_id: str = "unknown"):
    """
    Start the Prometheus HTTP exporter.

    Calling it again after the server is up is a no-op.
    """
    global _server_port

    if _server_port is not None:
        logger.debug(f"Metrics server already running on port {_server_port}")
        return

    worker_info.info({
        'worker_id': worker_id,
        'version': '0.1.0'
    })
    start_http_server(port)
    _server_port = port
    logger.info(f"Metrics server started on port {port}")
