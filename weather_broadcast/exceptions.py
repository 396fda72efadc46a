"""Error taxonomy for the broadcast pipeline"""


class BroadcastError(Exception):
    """Base class for pipeline errors"""


class WeatherUnavailableError(BroadcastError):
    """Fresh weather could not be fetched and no snapshot exists to fall back on"""


class ConfigurationError(BroadcastError):
    """A stage is missing required credentials or settings"""


class GenerationError(BroadcastError):
    """A narration, audio, image or render collaborator failed"""


class IntegrityError(BroadcastError):
    """An artifact a stage claims to have produced is missing on disk"""
