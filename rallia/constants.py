"""
Engine-wide constants for the Rallia rating certification engine.

This module contains the fixed values used throughout the codebase: rating
system eligibility floors, seed data for the supported sports and the
defaults the certification rules fall back to.
"""

class CertificationConstants:
    """Constants related to rating certification."""

    # Default evidence thresholds (overridable through Config)
    DEFAULT_REQUIRED_REFERENCES = 3
    DEFAULT_REQUIRED_PROOFS = 2

    # Minimum self-declared level before a player may ask for references
    # or peer ratings, keyed by rating system code. Codes not listed are eligible.
    MIN_LEVEL_FOR_REFERENCES = {
        'NTRP': 3.0,
        'DUPR': 3.5,
    }

class RequestConstants:
    """Constants for reference and peer rating requests."""

    DEFAULT_EXPIRY_DAYS = 14

    # Incoming request lists
    DEFAULT_PAGE_SIZE = 20

class SeedConstants:
    """Default sports and rating systems created on first start."""

    SPORTS = [
        {'name': 'tennis', 'display_name': 'Tennis'},
        {'name': 'pickleball', 'display_name': 'Pickleball'},
    ]

    # Rating systems: code, sport, value range and step
    RATING_SYSTEMS = [
        {
            'code': 'NTRP',
            'name': 'National Tennis Rating Program',
            'sport': 'tennis',
            'min_value': 1.5,
            'max_value': 7.0,
            'step': 0.5,
        },
        {
            'code': 'DUPR',
            'name': 'Dynamic Universal Pickleball Rating',
            'sport': 'pickleball',
            'min_value': 2.0,
            'max_value': 8.0,
            'step': 0.5,
        },
    ]
