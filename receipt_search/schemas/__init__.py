"""
Pydantic schemas for API request and response validation.

- embeddings: unified embedding records and the typed metadata model
- queue: queue tasks, webhook payloads and embedding metrics
- search: hybrid search requests, filters and ranked results
- maintenance: content health and repair reports
"""
