"""Core alert evaluation logic for patient vital sign monitoring.

This package contains the measurement store, rule strategies and alert model,
isolated from transports and producers for easy testing and reasoning.
"""
