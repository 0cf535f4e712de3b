"""
Celery tasks package.

Background maintenance of the diagnostic data layer.

Queues:
- maintenance_queue: session cleanup sweep, TV interface optimization and
  oversized screenshot reports

Note: task modules are registered by the import at the end of celery_app.py.
Do NOT import task modules here to avoid circular imports.
"""

__all__ = []
