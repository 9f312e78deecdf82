"""Computational backends for multiscale independence fits."""
