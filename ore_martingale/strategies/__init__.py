"""Stake sizing and square selection."""
