"""protoscaffold -- scaffold gRPC microservices from proto definitions."""

__version__ = "0.1.0"
