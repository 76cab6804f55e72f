"""TPS recorder: scheduled TPS/MSPT collection and time-bucketed history API."""

__version__ = '0.1.0'
