from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel
import os
import uuid

app = FastAPI(title="Mock Payment Rail", version="1.0.0")
# Users listed here get a 422 to exercise the failure path
FAILING_USERS = set(filter(None, os.environ.get("RAIL_FAILING_USERS", "").split(",")))
# Idempotency-Key -> transfer; repeats return the first answer
TRANSFERS: dict[str, dict] = {}


class TransferRequest(BaseModel):
    reference: str
    user_id: str
    amount_paise: int
    currency: str = "INR"


@app.get("/health")
def health(): return {"status": "ok"}

@app.post("/rail/transfers")
def create_transfer(body: TransferRequest, idempotency_key: str = Header(..., alias="Idempotency-Key")):
    if idempotency_key in TRANSFERS:
        return TRANSFERS[idempotency_key]
    if body.user_id in FAILING_USERS or body.amount_paise <= 0:
        raise HTTPException(status_code=422, detail="beneficiary rejected")
    transfer = {"rrn": uuid.uuid4().hex[:12].upper(), "gateway": "mock-imps", "reference": body.reference}
    TRANSFERS[idempotency_key] = transfer
    return transfer
