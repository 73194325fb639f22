"""
Main API Router - Consolidates all module routes
"""

from fastapi import APIRouter
from millstock.api.v1 import movements, stock, outturns, rates

api_router = APIRouter()

# Movement ledger
api_router.include_router(movements.router, prefix="/movements", tags=["movements"])

# Balances and opening balances
api_router.include_router(stock.router, prefix="/stock", tags=["stock"])

# Production outturns
api_router.include_router(outturns.router, prefix="/outturns", tags=["outturns"])

# Average and purchase rates
api_router.include_router(rates.router, prefix="/rates", tags=["rates"])
