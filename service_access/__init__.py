"""Integration Hub access service package."""
