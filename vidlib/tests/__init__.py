"""Tests for the vidlib backend."""
