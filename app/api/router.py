from fastapi import APIRouter

from app.api.v1.routes import assignments, customer, health, operators, realtime, requests

api_router = APIRouter()
api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(operators.router, prefix="/v1/operators", tags=["operators"])
api_router.include_router(requests.router, prefix="/v1/requests", tags=["requests"])
api_router.include_router(assignments.router, prefix="/v1/assignments", tags=["assignments"])
api_router.include_router(customer.router, prefix="/v1/customer", tags=["customer"])
api_router.include_router(realtime.router, prefix="/v1/realtime", tags=["realtime"])
