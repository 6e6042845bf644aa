"""Orchestration services: bus, breakers, routing, sagas and the orchestrator."""
