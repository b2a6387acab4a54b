"""
Infrastructure components for the Live Session Engine - transport and session client.
"""

from .transport import *
from .live_client import *
