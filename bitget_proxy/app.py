import argparse
import logging
import time
import uuid
from typing import Any, Dict, Optional

from flask import Flask, Response, g, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .bitget_client import BitgetGateway
from .config import CONFIG
from .errors import InvalidRequest, ProxyError
from .logging_config import REQUEST_ID_CTX, log_config, setup_logging
from .metrics import render_prometheus
from .pyd_schemas import CandleOut, HealthResponse, SpikeAlertOut, SpikeAlertsResponse, TickerOut
from .refresh import Refresher
from .service import MarketDataService
from .utils import find_available_port

logger = logging.getLogger(__name__)


def _int_arg(name: str, default: Optional[int]) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidRequest(f"{name} must be an integer") from None


def create_app(service: Optional[MarketDataService] = None, config: Optional[Dict[str, Any]] = None) -> Flask:
    cfg = dict(config or CONFIG)
    if service is None:
        service = MarketDataService(BitgetGateway(config=cfg), config=cfg)

    app = Flask(__name__)
    app.extensions['market_data'] = service
    app.config['PROXY'] = cfg

    cors_env = cfg.get('CORS_ALLOWED_ORIGINS', '*')
    cors_origins = '*' if cors_env == '*' else [o.strip() for o in cors_env.split(',') if o.strip()]
    CORS(app, origins=cors_origins)

    error_stats = {'5xx': 0}

    @app.before_request
    def _bind_request_id():
        g._start_time = time.time()
        rid = request.headers.get('X-Request-ID') or uuid.uuid4().hex[:12]
        g._request_id = rid
        g._rid_token = REQUEST_ID_CTX.set(rid)

    @app.after_request
    def _after_request(resp):
        if 500 <= resp.status_code < 600:
            error_stats['5xx'] += 1
        rid = getattr(g, '_request_id', None)
        if rid:
            resp.headers['X-Request-ID'] = rid
        return resp

    @app.teardown_request
    def _reset_request_id(exc=None):
        token = g.pop('_rid_token', None)
        if token is not None:
            try:
                REQUEST_ID_CTX.reset(token)
            except ValueError:
                REQUEST_ID_CTX.set(None)

    @app.errorhandler(ProxyError)
    def _proxy_error(err: ProxyError):
        if err.status_code >= 500:
            logger.error(f"{request.path} failed: {err.message}")
        else:
            logger.info(f"{request.path} rejected: {err.message}")
        return jsonify(err.payload()), err.status_code

    @app.errorhandler(Exception)
    def _unhandled(err: Exception):
        if isinstance(err, HTTPException):
            if err.code is None or err.code < 400:
                return err
            return jsonify({'error': err.description}), err.code
        logger.exception(f"Unhandled error on {request.path}")
        return jsonify({'error': 'internal', 'details': str(err)}), 500

    # ---------------------------------------------------------------- routes

    @app.route('/api/bitget/all-tickers')
    def all_tickers():
        """All tickers, with 5m variation fields when enrichment is on."""
        batch = service.all_tickers()
        with_5m = cfg['CHANGE_5M_ENABLED']
        body = [TickerOut.from_ticker(t, batch.change_5m.get(t.symbol), with_5m).model_dump() for t in batch.tickers]
        return jsonify(body)

    @app.route('/api/bitget/ticker')
    def ticker():
        symbol = request.args.get('symbol') or cfg['DEFAULT_SYMBOL']
        return jsonify(TickerOut.from_ticker(service.ticker(symbol)).model_dump())

    @app.route('/api/bitget/candles')
    def candles():
        symbol = request.args.get('symbol') or cfg['DEFAULT_SYMBOL']
        period = request.args.get('period') or cfg['DEFAULT_PERIOD']
        limit = _int_arg('limit', 1)
        series = service.candles(symbol, period, limit)
        out = CandleOut.from_candles(series.symbol, series.period, series.candles, cfg['VARIATION_DECIMALS'])
        return jsonify(out.model_dump())

    @app.route('/api/bitget/products')
    def products():
        return jsonify(service.products())

    @app.route('/api/bitget/spike-alerts')
    def spike_alerts():
        limit = _int_arg('limit', None)
        if limit is not None and limit <= 0:
            limit = None
        alerts = [SpikeAlertOut.from_alert(a) for a in service.spike_alerts(limit)]
        return jsonify(SpikeAlertsResponse(count=len(alerts), alerts=alerts).model_dump())

    @app.route('/api/health')
    def api_health():
        payload = service.health()
        payload['errors_5xx'] = error_stats['5xx']
        return jsonify(HealthResponse(**payload).model_dump())

    # Plain liveness probe
    @app.route('/health')
    def health():
        return Response('OK', status=200, mimetype='text/plain')

    @app.route('/metrics.prom')
    def metrics_prom():
        return Response(render_prometheus(service.health()), mimetype='text/plain; version=0.0.4')

    return app


# =============================================================================
# COMMAND LINE ARGUMENTS
# =============================================================================

def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(description='Caching proxy for the Bitget market-data API')
    parser.add_argument('--port', type=int, help='Port to run the server on')
    parser.add_argument('--host', type=str, help='Host to bind the server to')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    parser.add_argument('--auto-port', action='store_true', help='Automatically find available port')
    parser.add_argument('--no-refresh', action='store_true', help='Disable the background all-tickers refresh')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_arguments(argv)
    cfg = dict(CONFIG)
    if args.host:
        cfg['HOST'] = args.host
    if args.port:
        cfg['PORT'] = args.port
    if args.debug:
        cfg['DEBUG'] = True
    if args.no_refresh:
        cfg['BACKGROUND_REFRESH'] = False
    if args.auto_port:
        cfg['PORT'] = find_available_port(cfg['PORT'])

    setup_logging('DEBUG' if cfg['DEBUG'] else None)
    log_config(cfg)

    service = MarketDataService(BitgetGateway(config=cfg), config=cfg)
    app = create_app(service, cfg)

    refresher = None
    if cfg['BACKGROUND_REFRESH']:
        refresher = Refresher(service, cfg['REFRESH_INTERVAL'], cfg['CACHE_SWEEP_INTERVAL'])
        refresher.start()
    try:
        logger.info(f"Server running on {cfg['HOST']}:{cfg['PORT']}")
        app.run(host=cfg['HOST'], port=cfg['PORT'], debug=cfg['DEBUG'], use_reloader=False, threaded=True)
    finally:
        if refresher:
            refresher.stop()


if __name__ == '__main__':
    main()
