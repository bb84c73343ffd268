# services/share-service/fileshare/monitoring/metrics.py
from prometheus_client import Counter, Histogram, Info
from prometheus_fastapi_instrumentator import Instrumentator
from datetime import datetime

# Business Metrics
uploads_total = Counter(
    'fileshare_uploads_total',
    'Upload batches by outcome',
    ['status']
)

uploaded_bytes = Counter(
    'fileshare_uploaded_bytes_total',
    'Total bytes written by uploads'
)

upload_duration = Histogram(
    'fileshare_upload_duration_seconds',
    'Upload batch duration in seconds',
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300)
)

object_store_errors = Counter(
    'fileshare_object_store_errors_total',
    'Failed object store operations',
    ['operation']
)

cascade_deleted = Counter(
    'fileshare_cascade_deleted_total',
    'Rows removed by folder cascade deletes',
    ['resource']
)

editor_callbacks = Counter(
    'fileshare_editor_callbacks_total',
    'Document editor callbacks by status and result',
    ['status', 'result']
)

public_link_resolutions = Counter(
    'fileshare_public_link_resolutions_total',
    'Public link lookups by outcome',
    ['outcome']
)

# Error tracking
errors_total = Counter(
    'fileshare_errors_total',
    'Total number of errors',
    ['error_type', 'endpoint']
)

service_info = Info('fileshare_service', 'Service information')

class MetricsCollector:
    def __init__(self):
        self.instrumentator = Instrumentator(
            should_group_status_codes=False,
            should_ignore_untemplated=True,
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics", "/api/v1/health"],
            inprogress_name="fileshare_requests_inprogress",
            inprogress_labels=True,
        )

    def instrument_app(self, app, version: str):
        """Add automatic instrumentation to FastAPI app"""
        self.instrumentator.instrument(app).expose(app, endpoint="/metrics")
        service_info.info({
            'version': version,
            'started_at': datetime.utcnow().isoformat()
        })

metrics_collector = MetricsCollector()
