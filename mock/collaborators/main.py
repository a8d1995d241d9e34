from decimal import Decimal
import time

from fastapi import FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse

app = FastAPI(title="Mock Collaborators", version="1.0.0")

STUDENTS = {
    "STU001": {"student_id": "STU001", "stipend_type": "full-scholarship", "eligible": True},
    "STU002": {"student_id": "STU002", "stipend_type": "self-funded", "eligible": True},
    "STU003": {"student_id": "STU003", "stipend_type": "partial", "eligible": True},
    "STU004": {"student_id": "STU004", "stipend_type": "full-scholarship", "eligible": False},
}

BANK_DETAILS = {
    "STU001": {"account_number": "0012345678", "bank_id": "BANK-A"},
    "STU002": {"account_number": "0087654321", "bank_id": "BANK-B"},
    "STU003": {"account_number": "0011223344", "bank_id": "BANK-A"},
}

TOKENS = {
    "admin-token": {"subject": "admin@university.edu", "role": "admin"},
    "finance-token": {"subject": "finance@university.edu", "role": "finance_officer"},
}

# Idempotency-Key -> settlement response
SETTLED = {}


@app.get("/health")
def health(): return {"status": "ok"}


@app.get("/api/students/{student_id}")
def get_student(student_id: str):
    if student_id not in STUDENTS:
        raise HTTPException(status_code=404, detail="student not found")
    return STUDENTS[student_id]


@app.get("/api/student-bank-details/{student_id}")
def get_bank_details(student_id: str):
    if student_id not in BANK_DETAILS:
        raise HTTPException(status_code=404, detail="bank details not found")
    return BANK_DETAILS[student_id]


@app.get("/api/verify")
def verify(authorization: str = Header(default="")):
    token = authorization.removeprefix("Bearer ").strip()
    # student-<id> tokens authenticate as that student
    if token.startswith("student-"):
        return {"subject": token.removeprefix("student-"), "role": "student"}
    if token not in TOKENS:
        raise HTTPException(status_code=401, detail="invalid token")
    return TOKENS[token]


@app.post("/settlements")
def settle(payload: dict, idempotency_key: str = Header(...)):
    if idempotency_key in SETTLED:
        return SETTLED[idempotency_key]
    amount = Decimal(str(payload.get("amount", "0")))
    if amount <= 0 or amount > Decimal("1000000"):
        return JSONResponse(status_code=422, content={"error": "Transfer amount exceeds limit or invalid"})
    result = {"status": "ok", "reference_number": f"TXN-{time.time_ns()}-{payload['transaction_id'][:8]}"}
    SETTLED[idempotency_key] = result
    return result
