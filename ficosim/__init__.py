"""Discrete-event simulation kernel with CAN and FlexRay fieldbus node models."""

__version__ = "0.1.0"