"""Conduit - a DAG workflow engine for tool pipelines."""

__version__ = "0.1.0"
