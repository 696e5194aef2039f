# remediation_agent/api/v1/api.py
from fastapi import APIRouter
from remediation_agent.api.v1.endpoints import remediation

api_router = APIRouter()

api_router.include_router(remediation.router, prefix="/remediation", tags=["Remediation"])
