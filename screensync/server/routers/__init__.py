"""
ScreenSync API Routers.

Modules:
    health    – Health, readiness and liveness checks
    publish   – Publish an advertiser, reconcile locations
    screens   – Per-screen reconcile, health check, playback state
    uploads   – Upload worker pass and job status
    platform  – Remote platform auth diagnostics
"""
