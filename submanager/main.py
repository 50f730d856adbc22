from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .db import init_db
from .errors import ServiceError
from .logging import setup_logging
from . import auth, products, subscriptions

setup_logging()

app = FastAPI(title="Subscription Manager")
init_db()

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/health")
def health():
    return JSONResponse({"ok": True})

app.include_router(auth.router)
app.include_router(products.router)
app.include_router(subscriptions.router)

@app.exception_handler(ServiceError)
def service_error(request: Request, exc: ServiceError):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
