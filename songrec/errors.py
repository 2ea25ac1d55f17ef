"""
Error taxonomy

Missing song data is the normal case in this domain and is never raised:
empty result lists, the ``fallback`` model status and the ``cold-start``
tag carry it instead. Exceptions are reserved for input the caller got
wrong, and for lookups of songs that do not exist.
"""


class SongRecError(Exception):
    """Base class for every error raised by songrec"""


class MalformedInputError(SongRecError, ValueError):
    """
    Structurally invalid caller input

    EXAMPLES:
    =========
    - Rating outside [1, 5]
    - Unknown interaction event kind
    - Weight configuration with negative entries or a total above 1
    - Non-positive result limit
    """


class SongNotFoundError(SongRecError, LookupError):
    """Raised when a song id is not present in the repository"""

    def __init__(self, song_id):
        super().__init__(f"Song {song_id} not found")
        self.song_id = song_id
