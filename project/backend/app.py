from flask import Flask, jsonify, send_from_directory, request, Response
from typing import Any, Dict, Optional
import json
import logging
import re

from fallback_gateway import FallbackGateway
from lsr_config import Settings
from lsr_service import build_gateway, build_request_manager, build_store
from lsr_time import parse_query_range
from snapshot_store import SnapshotStore

logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
log = logging.getLogger('lsr.app')

CALLBACK_RE = re.compile(r'^[A-Za-z_$][0-9A-Za-z_$]*(\.[A-Za-z_$][0-9A-Za-z_$]*)*$')


def _error_collection(message: str) -> Dict[str, Any]:
    return {'type': 'FeatureCollection', 'features': [], 'error': message}


def _respond(payload: Dict[str, Any], status: int, callback: Optional[str]) -> Response:
    """JSON, or JSONP framing `callback(<json>);` when a callback was given."""
    if callback:
        body = f"{callback}({json.dumps(payload, ensure_ascii=False)});"
        return Response(body, status=status, mimetype='application/javascript')
    resp = jsonify(payload)
    resp.status_code = status
    return resp


def create_app(settings: Optional[Settings] = None,
               gateway: Optional[FallbackGateway] = None,
               store: Optional[SnapshotStore] = None) -> Flask:
    settings = settings or Settings.from_env()
    store = store or build_store(settings)
    if gateway is None:
        gateway = build_gateway(settings, build_request_manager(settings))

    app = Flask(__name__)
    app.config['LSR_SETTINGS'] = settings

    @app.after_request
    def _cors(resp: Response):
        resp.headers['Access-Control-Allow-Origin'] = '*'
        return resp

    @app.route('/api/cache')
    @app.route('/api/cache.php')
    def api_cache():
        """Reports issued in [start, end] (UTC), from snapshots or the live feed."""
        callback = request.args.get('callback') or None
        if callback and not CALLBACK_RE.match(callback):
            return jsonify(_error_collection('Invalid callback')), 400
        try:
            qr = parse_query_range(
                request.args.get('start'),
                request.args.get('startHour'),
                request.args.get('end'),
                request.args.get('endHour'),
            )
        except ValueError as e:
            return _respond(_error_collection(str(e)), 400, callback)

        result = gateway.resolve(qr.start, qr.end)
        log.info('[API] %s source=%s kind=%s reports=%d status=%d',
                 qr.label(), result.source, result.kind.value,
                 len(result.collection.get('features', [])), result.http_status)
        return _respond(result.collection, result.http_status, callback)

    @app.route('/data/<filename>')
    def data_files(filename: str):
        # Only well-formed snapshot names are served
        if store.day_from_name(filename) is None:
            return jsonify({"error": "Unknown snapshot"}), 404
        if not (store.cache_dir / filename).is_file():
            return jsonify({"error": "Snapshot not found"}), 404
        return send_from_directory(str(store.cache_dir), filename, mimetype='application/geo+json')

    return app


app = create_app()


if __name__ == '__main__':
    settings = app.config['LSR_SETTINGS']
    app.run(host='0.0.0.0', port=settings.port, debug=True, use_reloader=False)
