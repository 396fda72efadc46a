"""Weather broadcast generator: weather data to narrated, timed video episodes"""

__version__ = "1.0.0"
