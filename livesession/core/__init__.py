"""
Core protocol, state and audio components of the Live Session Engine.
"""

from .errors import *
from .messages import *
from .responses import *
from .state_machine import *
from .events import *
from .playback_buffer import *
from .capture_relay import *
from .ring_buffer import *
from .audio_io import *
