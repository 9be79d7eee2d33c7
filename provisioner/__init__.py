"""Script catalog and remote execution core for bootstrapping Kubernetes nodes."""
