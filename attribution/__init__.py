"""Conversion attribution service for betting-house affiliate programs.

Receives click / registration / deposit postbacks, attributes them to an
affiliate link, computes commission exactly once and keeps link and
affiliate ledgers in step.
"""

__all__: list[str] = []
