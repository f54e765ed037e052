"""
Serving API Module
"""
from .main import create_api_app

__all__ = ["create_api_app"]
