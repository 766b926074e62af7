"""Infrastructure adapters implementing the outbound ports."""
