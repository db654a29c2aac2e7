"""Keep NGINX Plus upstream servers in step with Kubernetes services, endpoint slices and nodes."""

__version__ = "0.1.0"