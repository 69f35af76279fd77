import os
import sys
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sitebot.core.errors import BusinessError
from sitebot.db.database import init_db
from sitebot.dependencies import get_redis
from sitebot.routers import sites_router, widget_router

# Load environment variables
load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, close the cache client on shutdown."""
    print("[DEBUG] Starting up SiteBot API...", flush=True)
    init_db()
    yield
    await get_redis().close()


app = FastAPI(
    title="SiteBot API",
    description="Website crawling, knowledge search and widget chat",
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    print(f"[MIDDLEWARE] Incoming request: {request.method} {request.url.path}", flush=True, file=sys.stdout)
    response = await call_next(request)
    print(f"[MIDDLEWARE] Response status: {response.status_code}", flush=True, file=sys.stdout)
    return response


@app.exception_handler(BusinessError)
async def business_error_handler(request: Request, exc: BusinessError):
    headers = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)
    print(f"[ERROR] {exc.code}: {exc.message}", flush=True)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# Widget calls come from customer sites; origins are checked per site
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # must be False when allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sites_router, prefix="/api")
app.include_router(widget_router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
