"""Core domain models, repository protocols and services for the crosswalk engine."""
