"""FastAPI dependency injection functions.

Clients and services are built once in the application lifespan and kept on
app.state; these dependencies hand them to routes.
"""

from typing import Annotated

from fastapi import Depends, Request
from supabase import Client

from src.core.config import Settings, get_settings
from src.services.reconciliation_service import ReconciliationEngine


def get_supabase(request: Request) -> Client:
    """Get the Supabase client created at startup."""
    return request.app.state.supabase


def get_reconciliation_engine(request: Request) -> ReconciliationEngine:
    """Get the reconciliation engine created at startup."""
    return request.app.state.engine


SupabaseClient = Annotated[Client, Depends(get_supabase)]
Engine = Annotated[ReconciliationEngine, Depends(get_reconciliation_engine)]
AppSettings = Annotated[Settings, Depends(get_settings)]
