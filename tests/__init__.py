"""Test suite for ListingHarvester.

This package contains hermetic tests following the pytest framework.
Tests are structured to mirror the listing_harvester/ package hierarchy for discoverability.

Testing Philosophy:
    - Use pytest-mock and httpx.MockTransport for network isolation
    - Focus coverage on payload extraction, availability encoding and rollback logic
    - Avoid external dependencies - all I/O should be mocked
"""
