from prometheus_client import REGISTRY

from pixelforge import metrics


def _sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_record_image_processed():
    before = _sample("pixelforge_images_processed_total", {"status": "failed"})
    count_before = _sample("pixelforge_processing_duration_seconds_count")
    metrics.record_image_processed("failed")
    metrics.record_image_processed("completed", 0.2)
    assert _sample("pixelforge_images_processed_total", {"status": "failed"}) == before + 1
    assert _sample("pixelforge_processing_duration_seconds_count") == count_before + 1


def test_record_regions_detected_ignores_zero():
    before = _sample("pixelforge_watermark_regions_detected_total")
    metrics.record_regions_detected(0)
    metrics.record_regions_detected(3)
    assert _sample("pixelforge_watermark_regions_detected_total") == before + 3
