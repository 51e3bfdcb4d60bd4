"""
Configuration model, resilience layer and supporting services.
"""
