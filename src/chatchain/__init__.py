"""chatchain - per-chat Markov chain bot with a persistent model cache."""

__version__ = "0.3.0"
