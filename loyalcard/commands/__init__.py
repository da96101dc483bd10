"""
CLI Commands for loyalcard.

Usage:
    flask enrollments repair-cards [--dry-run]         # Issue missing cards
    flask enrollments reconcile-balances [--dry-run]   # Fix balance mirrors
"""
from .enrollments import init_app as init_enrollment_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_enrollment_commands(app)
