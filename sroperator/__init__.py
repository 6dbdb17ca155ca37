"""Schema Registry Operator: reconciles Schema resources against a schema registry."""

__version__ = "0.1.0"
