import logging

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from jobs import handle_recurring_approved
from recurrence import InvalidIntervalError
from scheduler import JobAlreadyRunningError, SchedulerManager
from schemas import SignedEventIn
from settlement import (
    SettlementThrottledError,
    TemplateNotFoundError,
    TransactionNotFoundError,
)
from signing import InvalidEventError, verify_event


app = FastAPI(title="Finance Scheduler")

scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.get("/healthz")
def healthz():
    return {"status": "ok", "scheduler_running": scheduler_manager.scheduler.running}


@app.post("/api/events/recurring-approved")
def recurring_approved(payload: SignedEventIn):
    try:
        event = verify_event(payload.token)
    except InvalidEventError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        result = handle_recurring_approved(event)
    except SettlementThrottledError as exc:
        return JSONResponse(
            status_code=429,
            content={"detail": str(exc)},
            headers={"Retry-After": str(max(1, int(exc.retry_after + 0.5)))},
        )
    except (TransactionNotFoundError, TemplateNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidIntervalError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "status": "already_settled" if result.already_settled else "settled",
        "transactionId": result.transaction_id,
        "recurringTemplateId": result.template_id,
        "nextRecurringDate": (
            result.next_recurring_date.isoformat()
            if result.next_recurring_date
            else None
        ),
    }


@app.post("/api/jobs/{job_id}/run")
def run_job(job_id: str):
    if job_id not in scheduler_manager.jobs:
        raise HTTPException(status_code=404, detail="Job not found")
    try:
        result = scheduler_manager.run_now(job_id)
    except JobAlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Manual run of {job_id} failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"job": job_id, "result": repr(result)}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
