"""
Vercel entry point for the SLA Engine API
"""
import sys
import os

# Add parent directory to path
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

# Set environment variables for serverless
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("SLA_SWEEP_INTERVAL_SECONDS", "0")  # No in-process scheduler in serverless

from mangum import Mangum
from src.main import app

# Lambda handler for ASGI app. Lifespan stays on: it wires the config provider and sweep service.
handler = Mangum(app, lifespan="auto")
