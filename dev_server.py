#!/usr/bin/env python3
"""
Local development server for the Traffic Advisor API.
Run `celery -A traffic_advisor.infrastructure.celery_app worker -B` alongside it for periodic generation.
"""

import os
import sys
from pathlib import Path

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

# Add src to Python path
current_dir = Path(__file__).parent
src_dir = current_dir / "src"
sys.path.insert(0, str(src_dir))

os.environ.setdefault('APP_ENV', 'dev')
if not os.getenv('REDIS_URL'):
    print("WARNING: REDIS_URL not set, using redis://localhost:6379/0")

if __name__ == "__main__":
    import uvicorn
    from traffic_advisor.config import get_settings

    settings = get_settings()
    print("Starting Traffic Advisor API")
    print(f"Docs: http://localhost:{settings.api_port}/docs")
    print(f"Health Check: http://localhost:{settings.api_port}/health")
    print("Press Ctrl+C to stop\n")

    uvicorn.run(
        "traffic_advisor.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower()
    )
