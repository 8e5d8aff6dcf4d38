# nexvoy/tasks/__init__.py
"""Celery application and periodic booking maintenance tasks."""
