"""PortLedger API — Flask app factory"""
from api.app import create_app, run_api
__all__ = ["create_app", "run_api"]
