"""Configuration loading for image builds."""
