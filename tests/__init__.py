"""
Test package for the quorum-aware autoscaler.
Contains unit and integration tests.
"""
