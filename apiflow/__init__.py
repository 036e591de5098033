import logging

from flask import Flask
from flask_cors import CORS

from apiflow.config import Config, EngineConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def create_app(config_class=Config, engine=None):
    """
    Build the Flask app.

    Args:
        config_class: Flask settings object
        engine: FlowExecutor to serve; built from the environment when omitted
    """
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
        format=LOG_FORMAT,
    )

    # Empty CORS_ORIGINS allows every origin
    origins = [origin.strip() for origin in app.config.get('CORS_ORIGINS', '').split(',') if origin.strip()]
    CORS(app,
         resources={r"/api/*": {"origins": origins or '*'}},
         supports_credentials=False,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "OPTIONS"])

    app.extensions['flow_executor'] = engine or build_flow_executor(app.config)

    from apiflow.routes import health
    app.register_blueprint(health.bp)

    from apiflow.routes import flows
    app.register_blueprint(flows.flows_bp)
    app.register_blueprint(flows.expressions_bp)

    return app


def build_flow_executor(settings):
    """Wire the engine against the backend named in the Flask settings."""
    from apiflow.clients.backend_client import BackendClient
    from apiflow.flow_engine import EnvironmentManager, FlowExecutor

    engine_config = EngineConfig.from_env()
    engine_config.backend_url = settings.get('BACKEND_URL') or engine_config.backend_url
    engine_config.backend_token = settings.get('BACKEND_API_TOKEN') or engine_config.backend_token

    backend_client = BackendClient(
        engine_config.backend_url,
        token=engine_config.backend_token or None,
        timeout=engine_config.backend_timeout,
    )
    environment_manager = EnvironmentManager(backend_client, cache_ttl=engine_config.cache_ttl_seconds)
    return FlowExecutor(environment_manager, config=engine_config)
