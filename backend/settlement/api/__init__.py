"""
API 路由
"""
from fastapi import APIRouter

from settlement.api import settlement, details

api_router = APIRouter()

api_router.include_router(settlement.router, prefix="/cost-settlement", tags=["成本结算"])
api_router.include_router(details.router, prefix="/details", tags=["结算明细"])
