"""Mock providers for running without audio hardware or API calls."""
