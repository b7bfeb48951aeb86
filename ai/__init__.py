"""
Advisory Module

Language-model decision source for advisory-delegated mode.
The model proposes a single instruction; the risk gate remains the hard
authority over whether it executes.
"""
