from fastapi import APIRouter, Depends
from supabase import Client

from api.deps import current_user_id, service_call
from database import get_db
from models import Balances
from services import balance_service, ledger_service

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


@router.get("/balances", response_model=Balances)
def my_balances(user_id: str = Depends(current_user_id), db: Client = Depends(get_db)):
    with service_call("Balance lookup", user_id=user_id):
        return balance_service.get_balances(db, user_id)


@router.get("/transfers")
def my_transfers(user_id: str = Depends(current_user_id), db: Client = Depends(get_db)):
    """Activity feed: admin credits, debits and adjustments, newest first."""
    with service_call("Transfer listing", user_id=user_id):
        return ledger_service.list_transfers(db, user_id)


@router.get("/transactions")
def my_transactions(user_id: str = Depends(current_user_id), db: Client = Depends(get_db)):
    with service_call("Transaction history", user_id=user_id):
        return ledger_service.list_transaction_history(db, user_id)


@router.get("/deposits")
def my_deposits(user_id: str = Depends(current_user_id), db: Client = Depends(get_db)):
    with service_call("Deposit listing", user_id=user_id):
        return ledger_service.list_deposits(db, user_id)
