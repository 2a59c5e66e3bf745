"""Artifact handling: extraction, integrity checks, install actions and the installer."""
