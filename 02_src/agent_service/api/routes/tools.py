"""Tool introspection routes."""

from fastapi import APIRouter
from pydantic import BaseModel

from ...app import Application


class ToolListResponse(BaseModel):
    """Response model for the tool list."""

    tools: list[str]


def create_tools_router(app: Application) -> APIRouter:
    """Create tools router."""
    router = APIRouter(prefix="/mcp", tags=["tools"])

    @router.get("/tools", response_model=ToolListResponse)
    async def list_tools() -> dict:
        """Fully-qualified names of every registered tool."""
        return {"tools": app.tool_broker.list_names()}

    return router
