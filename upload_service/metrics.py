from prometheus_client import Counter, Histogram

UPLOAD_COUNTER = Counter('video_uploads_total', 'Total number of video uploads')
UPLOAD_LATENCY = Histogram('video_upload_latency_seconds', 'Latency of video uploads')
FILE_SIZE_HISTOGRAM = Histogram(
    'upload_file_size_bytes',
    'Distribution of uploaded file sizes',
    buckets=[1e6, 10e6, 50e6, 100e6, 250e6, 500e6],
)
PRESIGN_FAILURES = Counter('presigned_url_failures_total', 'Pre-signed URL generation failures', ['endpoint'])
API_ERRORS = Counter('api_errors_total', 'Total API errors', ['endpoint', 'status_code'])
REQUEST_LATENCY = Histogram(
    'http_request_latency_seconds',
    'HTTP request latency',
    ['method', 'status_code'],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
