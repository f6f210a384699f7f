"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- Mirrored objects, mirror definitions and reconciliation keys
- The provider block of ExternalDNS resources
"""
