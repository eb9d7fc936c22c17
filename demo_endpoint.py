"""
Quick demo script to run the receipt search API locally.

This script starts a local server and shows how to make requests to the endpoints.
"""

import uvicorn

if __name__ == "__main__":
    print("=" * 60)
    print("Starting Receipt Search Backend Demo")
    print("=" * 60)
    print()
    print("📌 API Endpoints:")
    print("   - Health Check:  GET  http://localhost:8000/health")
    print("   - Search:        POST http://localhost:8000/search")
    print("   - Text search:   POST http://localhost:8000/search/text")
    print("   - Merchants:     GET  http://localhost:8000/search/merchants?q=acme")
    print("   - API Docs:           http://localhost:8000/docs")
    print()
    print("🔐 Authentication:")
    print("   /search and /maintenance require:  Authorization: Bearer <token>")
    print("   /embeddings and /queue require:    X-Worker-Token: <WORKER_TOKEN>")
    print("   /queue/webhook requires:           X-Webhook-Secret: <WEBHOOK_SECRET>")
    print()
    print("📝 Test with curl:")
    print('   curl -X POST "http://localhost:8000/search/text" \\')
    print('     -H "Authorization: Bearer <token>" \\')
    print('     -H "Content-Type: application/json" \\')
    print('     -d \'{"query_text": "acme store"}\'')
    print()
    print("=" * 60)
    print("Starting server on http://localhost:8000")
    print("Press Ctrl+C to stop")
    print("=" * 60)
    print()

    uvicorn.run(
        "receipt_search.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
