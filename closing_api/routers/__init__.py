from closing_api.routers.closing import router as closing_router

__all__ = ["closing_router"]
