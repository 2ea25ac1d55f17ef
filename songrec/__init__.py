"""Song recommendation scoring and catalogue data completion"""

__version__ = "1.0.0"
