from sitebot.routers.sites import router as sites_router
from sitebot.routers.widget import router as widget_router

__all__ = ["sites_router", "widget_router"]
