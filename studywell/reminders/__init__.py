"""Recurring reminder pipeline (resolver, occurrence store, watch loop, dispatcher, sweeper).

Runs in a single process: preference changes arrive from Firestore, the
dispatch poller and retention sweeper run as APScheduler jobs and all
of them share one SQL-backed occurrence store.
"""
