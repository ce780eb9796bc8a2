from fastapi import APIRouter

from app.api.routes import pix, transactions

api_router = APIRouter()

api_router.include_router(pix.router, prefix="/pix", tags=["PIX"])
api_router.include_router(transactions.router, prefix="/transactions", tags=["Transactions"])
