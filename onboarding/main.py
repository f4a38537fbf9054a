import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from onboarding.core.config import settings
from onboarding.core.http_hardening import install_error_handlers, install_http_hardening
from onboarding.api.router import router as onboarding_router
from onboarding.services.sms_service import sms_provider_health


app = FastAPI(title=settings.APP_NAME, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_http_hardening(app)
install_error_handlers(app)

app.include_router(onboarding_router, prefix="/api/onboarding")

if settings.OTP_DEMO_FALLBACK_ENABLED and not settings.demo_fallback_allowed():
    logging.getLogger("onboarding").warning("OTP demo fallback is configured but disabled in APP_ENV=%s", settings.APP_ENV)


@app.get("/health")
def health():
    return {"status": "ok", "env": settings.APP_ENV, "demo_fallback": settings.demo_fallback_allowed()}


@app.get("/health/sms")
def health_sms():
    return sms_provider_health()
