"""HTTP API: RevenueCat webhook and report endpoints."""
