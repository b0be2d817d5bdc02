"""API route registrations."""
from fastapi import APIRouter

from code_explainer.api.routes import explain


api_router = APIRouter()
api_router.include_router(explain.router)

__all__ = ["api_router"]
