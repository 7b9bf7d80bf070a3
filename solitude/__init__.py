"""
solitude
========

Multilevel analysis of daily solitude diaries: does more time alone help or
hurt well-being, where is the tipping point, and do choice and self-determined
motivation move it?

    python -m solitude --help
"""

__version__ = "0.1.0"
