"""
Headline Harvester - HTTP API
Flask application exposing the scraping pipeline
"""

import os
import sys
import uuid
import time as _time
from pathlib import Path
from functools import wraps

from flask import Flask, jsonify, request, g
from pydantic import ValidationError

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config_validator import load_config
from database import SeenArticleStore
from errors import StoreError
from logging_config import setup_logging, get_logger
from models import ScrapeRequest, HealthResponse, ErrorResponse
from scraper import scrape_websites

# Setup logging for web app
setup_logging()
logger = get_logger(__name__)

app = Flask('harvester')

# API Authentication
# Read API key from environment variable
API_KEY = os.environ.get('HARVESTER_API_KEY', '')


def require_api_key(f):
    """
    Decorator to require API key authentication for endpoints.

    If HARVESTER_API_KEY env var is not set, allows unauthenticated access.

    API key can be provided via:
    - X-API-Key header
    - api_key query parameter
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        # If no API key is configured, allow unauthenticated access
        if not API_KEY:
            return f(*args, **kwargs)

        # Check for API key in header or query param
        provided_key = request.headers.get('X-API-Key') or request.args.get('api_key')

        if not provided_key:
            logger.warning(
                "API key required but not provided",
                extra={'endpoint': request.endpoint, 'path': request.path}
            )
            return jsonify({'error': 'API key required', 'message': 'Provide API key via X-API-Key header or api_key query parameter'}), 401

        if provided_key != API_KEY:
            logger.warning(
                "Invalid API key provided",
                extra={'endpoint': request.endpoint, 'path': request.path}
            )
            return jsonify({'error': 'Invalid API key'}), 403

        return f(*args, **kwargs)
    return decorated_function


# Load config
PROJECT_DIR = Path(__file__).parent.parent
CONFIG_PATH = PROJECT_DIR / 'config' / 'settings.yaml'
config = load_config(str(CONFIG_PATH))

# Relative store paths are resolved against the project directory
DB_PATH = Path(config['store']['path'])
if not DB_PATH.is_absolute():
    DB_PATH = PROJECT_DIR / DB_PATH
config['store']['path'] = str(DB_PATH)

store = SeenArticleStore(str(DB_PATH))

# Application version
APP_VERSION = "1.0.0"


def get_store() -> SeenArticleStore:
    """The shared seen-article store, opened on first use"""
    if not store.is_open:
        store.open()
    return store


# Request logging with tracing
@app.before_request
def before_request():
    """Start timing and assign trace ID"""
    g.start_time = _time.time()
    # Generate or extract trace ID for request correlation
    g.trace_id = request.headers.get('X-Trace-ID') or str(uuid.uuid4())[:8]


@app.after_request
def after_request(response):
    """Log request completion with timing, status, and trace ID"""
    trace_id = getattr(g, 'trace_id', 'unknown')
    response.headers['X-Trace-ID'] = trace_id

    # Skip logging for health checks to reduce noise
    if request.path == '/health':
        return response

    duration = _time.time() - getattr(g, 'start_time', _time.time())
    logger.info(
        "Request processed",
        extra={
            'trace_id': trace_id,
            'method': request.method,
            'path': request.path,
            'status_code': response.status_code,
            'duration_ms': round(duration * 1000, 2),
            'remote_addr': request.remote_addr
        }
    )
    return response


@app.route('/health')
def health_check():
    """
    Health check endpoint for monitoring.
    Returns 200 if healthy, 503 if unhealthy.
    Does not require API key authentication.
    """
    components = {}
    is_healthy = True

    # Check store connectivity
    try:
        with get_store().get_connection() as conn:
            conn.execute("SELECT 1").fetchone()
        components['store'] = 'ok'
    except Exception as e:
        components['store'] = f'error: {str(e)}'
        is_healthy = False

    response_data = HealthResponse(
        status='healthy' if is_healthy else 'unhealthy',
        components=components,
        version=APP_VERSION
    )

    status_code = 200 if is_healthy else 503
    return jsonify(response_data.model_dump()), status_code


@app.route('/scrape', methods=['POST'])
@require_api_key
def api_scrape():
    """Scrape the posted websites and return one result per site"""
    trace_id = getattr(g, 'trace_id', 'unknown')

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify(ErrorResponse(error='Invalid request').model_dump(exclude_none=True)), 400

    try:
        websites = ScrapeRequest(**data).websites
    except ValidationError as e:
        logger.warning(
            "Invalid scrape request",
            extra={'trace_id': trace_id, 'errors': [err['msg'] for err in e.errors()]}
        )
        return jsonify(ErrorResponse(error='Invalid request').model_dump(exclude_none=True)), 400

    logger.info("Scrape requested", extra={'trace_id': trace_id, 'sites': len(websites)})

    try:
        results = scrape_websites(websites, config=config, store=get_store())
    except StoreError as e:
        logger.error("Seen-article store failure", extra={'trace_id': trace_id, 'error': str(e)})
        return jsonify(ErrorResponse(error='Scraping failed', details=str(e)).model_dump()), 500
    except Exception as e:
        logger.error(
            "Error in scraping",
            extra={'trace_id': trace_id, 'error_type': type(e).__name__, 'error': str(e)}
        )
        return jsonify(ErrorResponse(error='Scraping failed', details=str(e)).model_dump()), 500

    return jsonify(results)


if __name__ == '__main__':
    server = config.get('server', {})
    app.run(host=server.get('host', '0.0.0.0'), port=server.get('port', 4000))
