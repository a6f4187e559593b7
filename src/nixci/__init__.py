"""nixci - run a Nix-provisioned CI workflow as a single deterministic job."""

__version__ = "0.1.0"
