"""Logging setup for the proxy: console + rotating file, plain or JSON lines.

Each record carries the request id of the Flask request that produced it
(`X-Request-ID`, or a generated one), so upstream errors and dedupe waits can
be tied back to a client call. Background refresh records have no id.
"""
import logging, json, os
from logging.handlers import RotatingFileHandler
from contextvars import ContextVar

REQUEST_ID_CTX: ContextVar[str | None] = ContextVar('request_id', default=None)

LOG_DIR = os.environ.get('LOG_DIR', 'logs')
LOG_FILE = os.path.join(LOG_DIR, 'bitget_proxy.log')

# Structured fields passed through `extra=` that the JSON formatter keeps
EXTRA_FIELDS = ('event', 'path', 'status', 'symbol', 'key', 'failures', 'open_until', 'spike_percent')

# Chatty third-party loggers held at WARNING
QUIET_LOGGERS = ('urllib3', 'werkzeug')


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.correlation_id = REQUEST_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        base = {
            'ts': self.formatTime(record, datefmt='%Y-%m-%dT%H:%M:%S%z'),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', None),
        }
        for field in EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                base[field] = value
        if record.exc_info:
            base['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


def _formatter(use_json: bool) -> logging.Formatter:
    if use_json:
        return JsonFormatter()
    return logging.Formatter('%(asctime)s - %(levelname)s - %(correlation_id)s - %(name)s - %(message)s')


def _attach(root: logging.Logger, handler: logging.Handler, fmt: logging.Formatter) -> None:
    handler.setFormatter(fmt)
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)


def setup_logging(level: str | None = None, log_to_file: bool = True):
    """Configure the root logger. `LOG_LEVEL`, `LOG_FORMAT=json` and `LOG_DIR` come from the environment."""
    root = logging.getLogger()
    root.setLevel((level or os.environ.get('LOG_LEVEL', 'INFO')).upper())
    # Clear existing handlers to avoid duplicate logs in reloads
    root.handlers = []
    fmt = _formatter(os.environ.get('LOG_FORMAT', '').lower() == 'json')
    _attach(root, logging.StreamHandler(), fmt)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if not log_to_file:
        return
    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        _attach(root, RotatingFileHandler(LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3), fmt)
    except OSError:
        root.warning(f"Could not open {LOG_FILE}; logging to console only")


def log_config(config):
    """Log the effective configuration, with API keys masked."""
    logger = logging.getLogger('bitget_proxy')
    logger.info("=== Bitget proxy configuration ===")
    for key in sorted(config):
        value = config[key]
        if key.endswith('API_KEY') and value:
            value = '***'
        logger.info(f"{key}: {value}")
    logger.info("==================================")
