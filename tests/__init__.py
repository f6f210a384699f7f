"""
Tests package - Test suite for the ExternalDNS operator mirror engine.

Contains:
- unit/: Unit tests for individual components
- fixtures/: In-memory object store and sample objects
"""
