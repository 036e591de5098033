"""
Flow Engine - executes API test flows

A flow is a directed graph of HTTP requests, delays, conditions and
variable assignments, run against an environment's variables.
"""

from apiflow.flow_engine.executor import FlowExecutor
from apiflow.flow_engine.environment_manager import EnvironmentManager
from apiflow.flow_engine.http_executor import HttpRequestConfig, HttpRequestExecutor, HttpResponse

__all__ = [
    'FlowExecutor',
    'EnvironmentManager',
    'HttpRequestConfig',
    'HttpRequestExecutor',
    'HttpResponse',
]
