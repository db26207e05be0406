"""EAI broker library.

Modules include configuration, database access, ORM models and boundary
records, type inference and validation, the MessageBox and its subscription
tracker, interface and adapter configuration, the compute unit orchestrator
and its provisioners, destination workers, metrics, tracing and the process
log.
"""
