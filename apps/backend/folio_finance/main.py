from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import accounts, admin, budgets, categories, currencies, dashboard, export, goals, ocr, transactions
from .core.config import settings
from .core.errors import install_exception_handlers
from .core.logging_config import configure_logging

configure_logging()

app = FastAPI(title=settings.APP_NAME, version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After"],
)

install_exception_handlers(app)


@app.get("/health")
def health():
    return {"status": "ok"}


for module in (accounts, transactions, categories, budgets, goals, ocr, currencies, dashboard, export):
    app.include_router(module.router, prefix="/api/finance")
app.include_router(admin.router, prefix="/api")
