"""Core configuration, primitives and errors."""
