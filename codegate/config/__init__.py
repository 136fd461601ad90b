"""
Configuration module for codegate.
"""
from codegate.config.logging import setup_logging
from codegate.config.gateway import GatewayConfig

__all__ = ["setup_logging", "GatewayConfig"]
