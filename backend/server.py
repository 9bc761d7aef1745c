"""ASGI entry point. Run from the backend folder: uvicorn server:app --reload"""
from school_api.app import app

__all__ = ["app"]
