"""Reusable run profiles and setup/teardown hooks.

Scenario functions that build request payloads for a particular API live
with the run configuration that references them, not here.
"""
