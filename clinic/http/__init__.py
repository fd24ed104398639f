"""HTTP plumbing for the progress service: problem+json and request ids."""
