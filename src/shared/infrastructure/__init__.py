"""
Infrastructure Layer
=====================

Low-level technical concerns shared across modules:
- Structured JSON logging
- Grafana OTLP metrics export
"""
