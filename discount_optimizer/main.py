import logging

from fastapi import FastAPI, HTTPException

from .conflicts import validate_combination
from .eligibility import check_discount_eligibility
from .models import (
    CombinationValidation,
    EligibilityRequest,
    EligibilityResult,
    OptimizationResult,
    OptimizeRequest,
    ValidateCombinationRequest,
)
from .optimizer import find_optimal_discount_combination

# ---------------------------
# FastAPI App & Routes
# ---------------------------

app = FastAPI(title="Discount Optimizer Service")


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.post("/optimize", response_model=OptimizationResult)
def optimize(payload: OptimizeRequest):
    return find_optimal_discount_combination(
        payload.cartItems,
        payload.rules,
        payload.profile,
        payload.options,
        payload.currentDate,
    )


@app.post("/eligibility", response_model=EligibilityResult)
def eligibility(payload: EligibilityRequest):
    return check_discount_eligibility(payload.rule, payload.profile, payload.context)


@app.post("/validate-combination", response_model=CombinationValidation)
def validate(payload: ValidateCombinationRequest):
    if not payload.rules:
        raise HTTPException(status_code=400, detail="At least one discount is required")
    return validate_combination(payload.rules)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "discount_optimizer.main:app",
        host="127.0.0.1",
        port=8000,
        reload=False,
    )
