"""
Campaign webhook monitoring

Watches campaign metrics and delivers webhook notifications when
configured conditions are met.
"""

__version__ = "0.1.0"
