#!/usr/bin/env python3
"""Run script for minitask."""

import logging
import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

if __name__ == "__main__":
    log_level = os.getenv("LOG_LEVEL", "info").lower()
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "minitask.api.app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        log_level=log_level,
        reload=os.getenv("DEBUG", "False").lower() == "true",
    )
