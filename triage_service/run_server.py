"""
Run Triage Service
==================

Start: python -m triage_service.run_server
Stop:  Ctrl+C

Loads:
- Disease/symptom dataset (TRIAGE_DATA_DIR or bundled knowledge/)
- Session store (Redis, or in-memory when unavailable)
"""

import logging
import os

import uvicorn

from triage_service.app import app

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8000))
    logger.info("=" * 60)
    logger.info("Symptom Triage Service - Starting Server")
    logger.info(f"API Docs: http://localhost:{port}/docs")
    logger.info("=" * 60)

    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        log_level="info"
    )
