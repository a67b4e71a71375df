"""tmc-client: submit exercise projects to a TMC server."""

__version__ = "0.9.0"
