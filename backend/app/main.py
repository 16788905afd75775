import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.settings import settings, validate_settings
from app.db.session import SessionLocal, engine
from app.models import Base
from app.routers.audit import router as audit_router
from app.routers.bills import router as bills_router
from app.routers.returns import returns_router as sales_returns_router
from app.routers.returns import router as bill_returns_router
from app.services.ref_codes import ensure_billing_line_codes

app = FastAPI(title="Hospital Billing API", version="0.1.0")
logger = logging.getLogger("hms_billing.startup")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = request.headers.get("x-request-id")
    logger.exception("Unhandled server error", extra={"request_id": request_id})
    payload = {"detail": "Internal server error"}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=500, content=payload)


@app.on_event("startup")
def startup():
    validate_settings(settings)
    Base.metadata.create_all(bind=engine)

    db: Session = SessionLocal()
    try:
        ensured = ensure_billing_line_codes(db)
        if ensured:
            logger.info("Billing line types ensured (%s total).", len(ensured))
    finally:
        db.close()
    logger.info(
        "Billing ready: bill prefix=%s return prefix=%s payment history=%s",
        settings.bill_number_prefix,
        settings.sales_return_prefix,
        settings.payment_history_mode,
    )


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(bills_router)
app.include_router(bill_returns_router)
app.include_router(sales_returns_router)
app.include_router(audit_router)
