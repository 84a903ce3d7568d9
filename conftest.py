"""Keeps the repository root importable so tests resolve the reprovision namespace package."""
