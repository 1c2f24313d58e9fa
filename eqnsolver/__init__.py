"""
Iterative LLM derivation service for Schrödinger / Hamiltonian problems.
"""
__version__ = "1.0.0"
