#!/usr/bin/env python
"""
Run the booking API locally.

Run: python run_api.py

Then open browser: http://localhost:8000/docs
"""
import uvicorn

from roombook.config import configure_logging, get_settings

if __name__ == "__main__":
    configure_logging(get_settings().log_level)
    uvicorn.run(
        "roombook.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
