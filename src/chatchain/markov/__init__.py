"""
Generative text model.

A word-level Markov chain that learns from fed lines and produces new
sequences, optionally anchored on a starting token.
"""

from chatchain.markov.chain import MarkovChain

__all__ = ["MarkovChain"]
