from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from affiliate_ledger.core.config import settings
from affiliate_ledger.core.logging_config import configure_logging
import affiliate_ledger.models  # noqa: F401  # force model registration

from affiliate_ledger.api.v1.affiliate import router as affiliate_router
from affiliate_ledger.api.v1.admin_affiliates import router as admin_affiliates_router


def create_application() -> FastAPI:
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title="Affiliate Ledger API")

    # affiliate portal and clinic admin dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_origin_regex=settings.CORS_ORIGIN_REGEX,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def root():
        return {"status": "ok", "service": "affiliate-ledger"}

    # Routers
    app.include_router(affiliate_router, prefix="/api/v1")
    app.include_router(admin_affiliates_router, prefix="/api/v1")

    return app


app = create_application()
