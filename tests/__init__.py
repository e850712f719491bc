"""
Test Suite for the Launchpad Core

One module per component plus API tests over the FastAPI router.
"""
