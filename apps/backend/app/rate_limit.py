"""
IP-based rate limiting for the generation relay.
"""
import os
from slowapi import Limiter
from slowapi.util import get_remote_address

# Generation is expensive upstream: 10 per minute in dev, 30 in production
RATE_LIMIT_SUMMARIZE = os.getenv("RATE_LIMIT_SUMMARIZE", "10/minute" if os.getenv("ARACHNE_ENV") == "dev" else "30/minute")

limiter = Limiter(key_func=get_remote_address)
