"""Deployments module: release and rollback ledger."""
from .models import Application, Deployment, Environment, Region
from .routes import router

__all__ = [
    "Application",
    "Deployment",
    "Environment",
    "Region",
    "router",
]
