"""
FastAPI routers for all API endpoints.

- search: user-facing search endpoints (Bearer token)
- embeddings, queue: worker-facing endpoints (X-Worker-Token) and the
  database webhook (X-Webhook-Secret)
- maintenance: operator endpoints (admin role)
"""
