"""Availability reconciliation and dynamic pricing for Beds24-managed apartments.

Modules:
- config: Settings (env / .env) and the PricingConfig derived from it
- errors: StaySyncError hierarchy with stable error codes
- models: windows, adapter results, quotes
- context: EngineContext wiring and build_context()
- logging_setup: console + rotating file logging for scripts
- services/: rate limiter, auth, Beds24 client, adapters, reconciler,
  cache, pricing and the exposed availability operations
"""
