"""Tests for the MineChat client."""
