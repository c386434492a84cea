# Routes package init
"""
apihost — Bundled Routes
========================

Route Inventory:
    - health.py:  GET /api/health   (host and database health)

Everything else is registered by the application through the host's
route registrar.
"""
