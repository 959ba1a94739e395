import logging
from prometheus_client import Counter, start_http_server

logger = logging.getLogger(__name__)

AUTH_DECISIONS = Counter(
    'musicapi_auth_decisions_total',
    'Auth gate decisions by outcome',
    ['outcome'],
)
SESSION_EVICTIONS = Counter(
    'musicapi_session_evictions_total',
    'Sessions evicted to keep a user under the session cap',
)
LOGINS = Counter(
    'musicapi_logins_total',
    'Login attempts by outcome',
    ['outcome'],
)


def init_metrics(port: int = 8001):
    """Initialize Prometheus metrics server"""
    if not port:
        logger.info('Prometheus metrics server disabled')
        return
    try:
        start_http_server(port)
        logger.info(f'Prometheus metrics server started on port {port}')
    except OSError as e:
        logger.warning(f'Prometheus start failed: {e}')
