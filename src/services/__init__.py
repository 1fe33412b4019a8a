"""
Background services: gateway, polling scheduler and the server orchestrator
"""
