"""Prometheus text exposition for cache, dedupe and circuit breaker state."""
from __future__ import annotations
from typing import Any, Dict


def emit_prometheus(lines: list[str], name: str, value: Any, mtype: str, help_text: str):
    lines.append(f'# HELP {name} {help_text}')
    lines.append(f'# TYPE {name} {mtype}')
    if value is None:
        value = 'NaN'
    elif isinstance(value, bool):
        value = int(value)
    lines.append(f'{name} {value}')


def render_prometheus(health: Dict[str, Any]) -> str:
    lines: list[str] = []
    emit_prometheus(lines, 'bitget_proxy_uptime_seconds', health.get('uptime_seconds'), 'gauge',
                    'Seconds since the service started')
    emit_prometheus(lines, 'bitget_proxy_pending_requests', health.get('pending_requests', 0), 'gauge',
                    'Upstream calls currently in flight (deduplicated)')
    emit_prometheus(lines, 'bitget_proxy_spike_alerts', health.get('spike_alerts', 0), 'gauge',
                    'Spike alerts held in the alert log')
    emit_prometheus(lines, 'bitget_proxy_upstream_calls_total', health.get('upstream_calls'), 'counter',
                    'Requests sent to the upstream API')
    emit_prometheus(lines, 'bitget_proxy_last_refresh_age_seconds', health.get('last_refresh_age_seconds'),
                    'gauge', 'Age of the last successful all-tickers refresh')
    for name, snap in (health.get('caches') or {}).items():
        emit_prometheus(lines, f'bitget_proxy_cache_{name}_entries', snap.get('entries'), 'gauge',
                        f'Entries held by the {name} cache')
        emit_prometheus(lines, f'bitget_proxy_cache_{name}_ttl_seconds', snap.get('ttl'), 'gauge',
                        f'TTL of the {name} cache')
    cb = health.get('circuit_breaker') or {}
    if cb:
        emit_prometheus(lines, 'bitget_proxy_circuit_open', cb.get('is_open'), 'gauge',
                        'Whether the upstream circuit breaker is open')
        emit_prometheus(lines, 'bitget_proxy_circuit_failures', cb.get('failures'), 'gauge',
                        'Consecutive upstream failures counted by the breaker')
        emit_prometheus(lines, 'bitget_proxy_circuit_trips_total', cb.get('trips'), 'counter',
                        'Times the upstream circuit breaker has tripped open')
    return '\n'.join(lines) + '\n'
