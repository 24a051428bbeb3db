"""Cross-cutting utilities shared by the web service and the worker.

Modules:
    logging: structlog configuration and logger factory.
"""
