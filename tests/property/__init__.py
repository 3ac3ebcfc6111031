# tests/property/__init__.py
"""Property-based tests for mockmongo.

These check invariants of the launch and replay machinery over generated
inputs: one launch per Preparing phase, no busy port ever used, and
replay in submission order.
"""
