"""Shared test doubles for ReleaseKit tests."""
