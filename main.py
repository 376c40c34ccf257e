"""Main FastAPI application for the options analytics backend."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

import config
from api.routes import router
from services.anomaly_detection import AnomalyDetectionEngine
from services.risk_assessment import RiskAssessmentEngine
from services.sentiment import HttpSentimentSource, SentimentAnalysisEngine

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_sentiment_sources():
    """HTTP sentiment feed when SENTIMENT_API_URL is set, otherwise none."""
    if config.SENTIMENT_API_URL:
        logger.info(f"Using sentiment feed at {config.SENTIMENT_API_URL}")
        return [HttpSentimentSource(config.SENTIMENT_API_URL, timeout=config.SENTIMENT_API_TIMEOUT)]
    logger.warning("SENTIMENT_API_URL not set; sentiment endpoint disabled")
    return []


# Create FastAPI app
app = FastAPI(
    title="Options Analytics API",
    description="Option pricing, portfolio P&L and rule-based risk analytics",
    version="1.0.0"
)

# Add CORS middleware - allow localhost dev servers and configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Engines are owned by the app and reached through route dependencies
app.state.anomaly_engine = AnomalyDetectionEngine()
app.state.risk_engine = RiskAssessmentEngine()
app.state.sentiment_engine = SentimentAnalysisEngine(build_sentiment_sources())


@app.exception_handler(ValueError)
async def domain_error_handler(request: Request, exc: ValueError):
    """Invalid numeric inputs (expired options, zero volatility, ...) -> 400."""
    logger.warning(f"Rejected {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"error": True, "detail": str(exc)})


# Include API routes
app.include_router(router)

@app.get("/")
async def root():
    """Health check endpoint."""
    return {"message": "Options Analytics API is running"}

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=config.PORT, reload=True)
