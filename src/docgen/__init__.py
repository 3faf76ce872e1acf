"""docgen - Document-to-PDF conversion service.

An intake API publishes conversion requests to RabbitMQ; a worker consumes
them, downloads the source document, converts it to PDF through a Gotenberg
gateway and optionally uploads the result to a caller-supplied callback URL.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
