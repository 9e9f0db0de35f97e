"""Configuration for oem-seal."""
