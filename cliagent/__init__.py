"""Run conversational turns through external agent CLIs."""

__version__ = "0.1.0"
