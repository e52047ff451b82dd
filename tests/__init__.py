"""Test suite for the formstate engine.

This package contains tests for:
- Value types, schemas and validators
- The validation engine and dependency propagation
- The reactive runtime, schedulers and debouncing
- FormHandle state, submission and disposal
- Persistence and analytics hooks
- Integration scenarios (registration flow, async runtime)
"""
