from fastapi import APIRouter
from onboarding.api import onboarding, otp

router = APIRouter()
router.include_router(onboarding.router, tags=["Onboarding"])
router.include_router(otp.router, prefix="/otp", tags=["OTP"])
