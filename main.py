from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from anchors import local_today
from database import SessionLocal
from ingestion import build_ingestor
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountSnapshotIn,
    CycleDatesIn,
    CycleOut,
    LedgerEntryIn,
    ManualLimitIn,
    PaymentIndicatorIn,
    RegenerationOut,
    WarningOut,
    WebhookIn,
)
from services import (
    AccountNotFound,
    AccountService,
    CycleService,
    LedgerService,
    RegenerationResult,
)
from workers import RegenerationPool


app = FastAPI(title="Card Cycles")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


regeneration_pool = RegenerationPool()
ingestor = build_ingestor(regeneration_pool)
scheduler_manager = SchedulerManager(regeneration_pool)


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()
    regeneration_pool.shutdown(wait=False)


def _account_json(account) -> dict[str, object]:
    return {
        "id": account.id,
        "user_id": account.user_id,
        "name": account.name,
        "mask": account.mask,
        "institution_name": account.institution_name,
        "open_date": account.open_date.isoformat() if account.open_date else None,
        "cycle_date_type": account.cycle_date_type.value
        if account.cycle_date_type
        else None,
        "cycle_anchor": account.cycle_anchor,
        "due_date_type": account.due_date_type.value if account.due_date_type else None,
        "due_anchor": account.due_anchor,
        "manual_dates_configured": account.manual_dates_configured,
        "balance_current_cents": account.balance_current_cents,
        "limit_cents": account.effective_limit_cents,
    }


def _regeneration_json(result: RegenerationResult, today: date) -> RegenerationOut:
    return RegenerationOut(
        account_id=result.account_id,
        cycles=[CycleOut.from_cycle(c, today) for c in result.cycles],
        warnings=[WarningOut(**w.as_dict()) for w in result.warnings],
        inserted=len(result.plan.inserts),
        updated=len(result.plan.updates),
        deleted=len(result.plan.deletes),
        preserved=len(result.plan.preserved),
    )


@app.get("/api/accounts")
def api_accounts(user_id: Optional[int] = None, db: Session = Depends(get_db)):
    accounts = AccountService(db).list_for_user(user_id)
    return {"items": [_account_json(a) for a in accounts]}


@app.post("/api/accounts", status_code=201)
def api_create_account(payload: AccountIn, db: Session = Depends(get_db)):
    account = AccountService(db).create(payload)
    return _account_json(account)


@app.patch("/api/accounts/{account_id}/cycle-dates", response_model=RegenerationOut)
def api_update_cycle_dates(
    account_id: int,
    payload: CycleDatesIn,
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
):
    today = as_of or local_today()
    try:
        AccountService(db).update_cycle_dates(account_id, payload, today=today)
    except AccountNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    result = CycleService(db).regenerate(account_id, today=today, reconfigure=True)
    return _regeneration_json(result, today)


@app.delete("/api/accounts/{account_id}/cycle-dates", status_code=204)
def api_clear_cycle_dates(account_id: int, db: Session = Depends(get_db)):
    try:
        AccountService(db).clear_manual_dates(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    CycleService(db).regenerate(account_id, reconfigure=True)
    return Response(status_code=204)


@app.put("/api/accounts/{account_id}/manual-limit")
def api_manual_limit(
    account_id: int, payload: ManualLimitIn, db: Session = Depends(get_db)
):
    try:
        account = AccountService(db).set_manual_limit(account_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _account_json(account)


@app.post("/api/accounts/{account_id}/snapshot", response_model=RegenerationOut)
def api_snapshot(
    account_id: int,
    payload: AccountSnapshotIn,
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
):
    today = as_of or local_today()
    try:
        reconfigure = AccountService(db).apply_snapshot(account_id, payload)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    result = CycleService(db).regenerate(
        account_id, today=today, reconfigure=reconfigure
    )
    return _regeneration_json(result, today)


@app.post("/api/accounts/{account_id}/entries", status_code=201)
def api_add_entries(
    account_id: int, payload: list[LedgerEntryIn], db: Session = Depends(get_db)
):
    try:
        account = AccountService(db).get(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    rows = [row.model_copy(update={"account_id": account.id}) for row in payload]
    saved = LedgerService(db).upsert_entries(account.item_id, rows)
    return {"saved": len(saved)}


@app.post("/api/payment-indicators", status_code=201)
def api_add_payment_indicator(
    payload: PaymentIndicatorIn, db: Session = Depends(get_db)
):
    indicator = LedgerService(db).add_payment_indicator(payload)
    return {
        "id": indicator.id,
        "phrase": indicator.phrase,
        "institution_name": indicator.institution_name,
    }


@app.post("/api/accounts/{account_id}/cycles/regenerate", response_model=RegenerationOut)
def api_regenerate(
    account_id: int, as_of: Optional[date] = None, db: Session = Depends(get_db)
):
    today = as_of or local_today()
    try:
        result = CycleService(db).regenerate(account_id, today=today)
    except AccountNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _regeneration_json(result, today)


@app.get("/api/accounts/{account_id}/cycles", response_model=list[CycleOut])
def api_cycles(
    account_id: int, as_of: Optional[date] = None, db: Session = Depends(get_db)
):
    today = as_of or local_today()
    cycles = CycleService(db).list_for_account(account_id)
    return [CycleOut.from_cycle(c, today) for c in reversed(cycles)]


@app.get("/api/accounts/{account_id}/cycles/current", response_model=CycleOut)
def api_current_cycle(
    account_id: int, as_of: Optional[date] = None, db: Session = Depends(get_db)
):
    today = as_of or local_today()
    try:
        draft = CycleService(db).current_cycle(account_id, today=today)
    except AccountNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if draft is None:
        raise HTTPException(status_code=404, detail="No current cycle")
    return CycleOut.from_draft(draft, today)


@app.get("/api/accounts/{account_id}/cycles/closed", response_model=CycleOut)
def api_closed_cycle(
    account_id: int, as_of: Optional[date] = None, db: Session = Depends(get_db)
):
    today = as_of or local_today()
    try:
        draft = CycleService(db).most_recent_closed_cycle(account_id, today=today)
    except AccountNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if draft is None:
        raise HTTPException(status_code=404, detail="No closed cycle yet")
    return CycleOut.from_draft(draft, today)


@app.get("/api/accounts/{account_id}/audit")
def api_audit(
    account_id: int, as_of: Optional[date] = None, db: Session = Depends(get_db)
):
    try:
        issues = CycleService(db).audit(account_id, today=as_of)
    except AccountNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"issues": [issue.as_dict() for issue in issues]}


@app.get("/api/users/{user_id}/cycles", response_model=list[CycleOut])
def api_user_cycles(
    user_id: int, as_of: Optional[date] = None, db: Session = Depends(get_db)
):
    today = as_of or local_today()
    cycles = CycleService(db).list_for_user(user_id)
    return [CycleOut.from_cycle(c, today) for c in cycles]


@app.post("/api/webhooks/aggregator")
def api_webhook(payload: WebhookIn, db: Session = Depends(get_db)):
    return ingestor.handle(db, payload)
