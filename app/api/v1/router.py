from fastapi import APIRouter

from app.api.v1.endpoints import users, consultations, admin, doctor, payments, webhooks, jobs

api_router = APIRouter()

api_router.include_router(users.router, prefix="/users", tags=["Users"])
api_router.include_router(consultations.router, prefix="/consultations", tags=["Consultations"])
api_router.include_router(admin.router, prefix="/admin", tags=["Admin"])
api_router.include_router(doctor.router, prefix="/doctor", tags=["Doctor"])
api_router.include_router(payments.router, prefix="/payments", tags=["Payments"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])
