"""Daily Ritual fitness integration engine.

Connects users to external fitness providers (Whoop, Strava), keeps their
OAuth tokens fresh, and imports provider workouts as draft reflections and
schedule entries, either on webhook delivery or on a user-triggered sync.

Sub-packages:
    adapters/  — Per-provider API clients
    store/     — Postgres and in-memory persistence
    tests/     — Unit and API tests
"""
