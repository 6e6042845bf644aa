"""Core abstractions for the orchestration core.

This package contains the backend-agnostic data model, error kinds,
protocols for backends and external collaborators, and the capability
registry.

Modules:
    errors: Error kinds and exception hierarchy
    interfaces: Protocol definitions for backends and collaborators
    models: Data models (Intent, Subtask, messages, routing, workflow)
    registry: Backend registration and capability negotiation
"""
