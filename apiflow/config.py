import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name: str) -> List[str]:
    value = os.getenv(name, '')
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')
    DEBUG = os.getenv('FLASK_ENV') == 'development'
    TESTING = False

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Comma separated; empty allows every origin
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', '')

    # Backend REST API holding projects, environments and flows
    BACKEND_URL = os.getenv('BACKEND_URL', 'http://localhost:8080/api')
    BACKEND_API_TOKEN = os.getenv('BACKEND_API_TOKEN', '')


@dataclass
class EngineConfig:
    """Limits and defaults of the flow engine"""

    # Backend
    backend_url: str = 'http://localhost:8080/api'
    backend_token: str = ''
    backend_timeout: float = 30.0  # seconds

    # HTTP executor
    http_timeout_ms: int = 30000
    http_retries: int = 3
    node_retries: int = 0  # extra attempts for http_request nodes without their own `retries`
    user_agent: str = 'apiflow-mcp-client/1.0.0'

    # Flow executor
    max_execution_time_ms: int = 600000  # 10 min
    max_depth: int = 50
    max_delay_ms: int = 30000

    # Environment cache
    cache_ttl_seconds: int = 300

    # Expression sandbox
    expression_timeout_seconds: float = 5.0

    # Destination policy
    allow_localhost: bool = True
    allow_private_ips: bool = True
    allowed_domains: List[str] = field(default_factory=list)
    blocked_domains: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """Build config from APIFLOW_* / BACKEND_* environment variables"""
        return cls(
            backend_url=os.getenv('BACKEND_URL', cls.backend_url),
            backend_token=os.getenv('BACKEND_API_TOKEN', cls.backend_token),
            backend_timeout=float(os.getenv('BACKEND_TIMEOUT', cls.backend_timeout)),
            http_timeout_ms=int(os.getenv('APIFLOW_HTTP_TIMEOUT_MS', cls.http_timeout_ms)),
            http_retries=int(os.getenv('APIFLOW_HTTP_RETRIES', cls.http_retries)),
            node_retries=int(os.getenv('APIFLOW_NODE_RETRIES', cls.node_retries)),
            user_agent=os.getenv('APIFLOW_USER_AGENT', cls.user_agent),
            max_execution_time_ms=int(os.getenv('APIFLOW_MAX_EXECUTION_TIME_MS', cls.max_execution_time_ms)),
            max_depth=int(os.getenv('APIFLOW_MAX_DEPTH', cls.max_depth)),
            max_delay_ms=int(os.getenv('APIFLOW_MAX_DELAY_MS', cls.max_delay_ms)),
            cache_ttl_seconds=int(os.getenv('APIFLOW_CACHE_TTL', cls.cache_ttl_seconds)),
            expression_timeout_seconds=float(
                os.getenv('APIFLOW_EXPRESSION_TIMEOUT', cls.expression_timeout_seconds)
            ),
            allow_localhost=_env_bool('APIFLOW_ALLOW_LOCALHOST', cls.allow_localhost),
            allow_private_ips=_env_bool('APIFLOW_ALLOW_PRIVATE_IPS', cls.allow_private_ips),
            allowed_domains=_env_list('APIFLOW_ALLOWED_DOMAINS'),
            blocked_domains=_env_list('APIFLOW_BLOCKED_DOMAINS'),
        )

    def url_policy(self):
        from apiflow.flow_engine.url_validator import UrlPolicy

        return UrlPolicy(
            allow_localhost=self.allow_localhost,
            allow_private_ips=self.allow_private_ips,
            allowed_domains=list(self.allowed_domains),
            blocked_domains=list(self.blocked_domains),
        )
