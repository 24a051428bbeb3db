"""Business logic services: asset store, webhook reconciliation, durable workflows."""
