"""docker-stack-deploy — GitOps agent for docker compose stacks."""

__version__ = "0.1.0"
