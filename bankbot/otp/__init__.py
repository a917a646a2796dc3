"""One-time passcodes: expiring code store, SMS delivery, rate limiter and routes."""
