import os

# The rate limiter is installed when siweauth.main is imported and every
# TestClient request comes from the same client address.
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
