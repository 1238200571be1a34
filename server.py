# FastAPI Server for deliverable review and creator payouts

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
import logging

from database.config import init_db
from routers import (
    deliverables_router,
    reviews_router,
    payouts_router,
    webhooks_router,
    notifications_router,
)

load_dotenv()

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Creator Payouts API",
    description="Deliverable review and Stripe Connect payout API",
    version="1.0.0"
)


@app.on_event("startup")
def startup_event():
    # Create missing tables; schema changes go through Alembic
    init_db()
    logger.info("Database tables initialized")


# CORS Setup - Allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Required when using "*"
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# ROUTERS (v2 API)
# ============================================================================
app.include_router(deliverables_router, prefix="/api/v2")
app.include_router(reviews_router, prefix="/api/v2")
app.include_router(payouts_router, prefix="/api/v2")
app.include_router(webhooks_router, prefix="/api/v2")
app.include_router(notifications_router, prefix="/api/v2")


# Health Check
@app.get("/")
def root():
    return {
        "message": "Creator Payouts API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}
